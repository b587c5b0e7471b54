"""Shared fixtures and test doubles."""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from core.config import DEFAULT_CONFIG, with_overrides
from core.errors import FileAccessError, StoreError
from editor.buffers import TabRegistry
from persistence.files import FileSystem
from persistence.records import FileContent, FileMetadata, TabRecord
from persistence.store import MemorySessionStore


class FakeFileSystem(FileSystem):
    """In-memory files with controllable modification times."""

    def __init__(self):
        self.files: Dict[str, Tuple[str, str, str]] = {}
        self.reads: List[str] = []
        self.writes: List[Tuple[str, str, str]] = []
        self._clock = 0
        self.read_gate: Optional[asyncio.Event] = None

    def put(self, path: str, content: str, encoding: str = "UTF-8") -> str:
        self._clock += 1
        modified = f"2024-01-01T00:00:{self._clock:02d}+00:00"
        self.files[path] = (content, encoding, modified)
        return modified

    def remove(self, path: str) -> None:
        self.files.pop(path, None)

    async def read_file(self, path: str) -> FileContent:
        self.reads.append(path)
        if self.read_gate is not None:
            await self.read_gate.wait()
        if path not in self.files:
            raise FileAccessError(path, "No such file or directory")
        content, encoding, _ = self.files[path]
        return FileContent(content=content, encoding=encoding)

    async def get_file_metadata(self, path: str) -> FileMetadata:
        if path not in self.files:
            raise FileAccessError(path, "No such file or directory")
        content, _, modified = self.files[path]
        return FileMetadata(created="2024-01-01T00:00:00+00:00", modified=modified, size=len(content))

    async def write_file(self, path: str, content: str, encoding: str = "UTF-8") -> None:
        self.writes.append((path, content, encoding))
        self.put(path, content, encoding)


class GatedStore(MemorySessionStore):
    """Memory store whose saves can be held open or made to fail."""

    def __init__(self):
        super().__init__()
        self.gate: Optional[asyncio.Event] = None
        self.fail_saves = 0
        self.fail_loads = False
        self.load_gates: Dict[str, asyncio.Event] = {}

    async def save_session(self, active_tabs: List[TabRecord], closed_tabs: List[TabRecord]) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_saves:
            self.fail_saves -= 1
            raise StoreError("disk full")
        await super().save_session(active_tabs, closed_tabs)

    async def load_tab_content(self, tab_id: str) -> Optional[str]:
        gate = self.load_gates.get(tab_id)
        if gate is not None:
            await gate.wait()
        if self.fail_loads:
            raise StoreError("store unavailable")
        return await super().load_tab_content(tab_id)


def record(tab_id: str, title: str, content: Optional[str] = None, path: Optional[str] = None, **kw) -> TabRecord:
    kw.setdefault("is_dirty", path is None)
    return TabRecord(id=tab_id, title=title, content=content, path=path, **kw)


@pytest.fixture
def config(tmp_path):
    return with_overrides(
        DEFAULT_CONFIG,
        session_db_path=str(tmp_path / "session.db"),
        session_save_debounce_ms=10,
        session_autosave_interval_ms=0,
        watch_debounce_ms=10,
    )


@pytest.fixture
def registry(config):
    return TabRegistry(config)


@pytest.fixture
def store():
    return GatedStore()


@pytest.fixture
def files():
    return FakeFileSystem()
