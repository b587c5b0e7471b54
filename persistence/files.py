"""Host file access used for dirty and conflict reconciliation."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

from core.errors import FileAccessError
from persistence.records import FileContent, FileMetadata


class FileSystem(ABC):
    """File operations the session core needs from its host."""

    @abstractmethod
    async def read_file(self, path: str) -> FileContent:
        """Return the raw text of ``path`` and its encoding."""
        ...

    @abstractmethod
    async def get_file_metadata(self, path: str) -> FileMetadata:
        """Return timestamps and size of ``path``."""
        ...

    @abstractmethod
    async def write_file(self, path: str, content: str, encoding: str = "UTF-8") -> None:
        """Write ``content`` to ``path``."""
        ...


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class LocalFileSystem(FileSystem):
    """Local disk access; blocking calls run in worker threads."""

    def _read(self, path: str) -> FileContent:
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise FileAccessError(path, e.strerror or str(e)) from e

        try:
            return FileContent(content=data.decode("utf-8"), encoding="UTF-8")
        except UnicodeDecodeError:
            return FileContent(content=data.decode("latin-1"), encoding="ISO-8859-1")

    def _metadata(self, path: str) -> FileMetadata:
        try:
            st = Path(path).stat()
        except OSError as e:
            raise FileAccessError(path, e.strerror or str(e)) from e

        created = getattr(st, "st_birthtime", None) or st.st_ctime
        return FileMetadata(
            created=_iso(created),
            modified=_iso(st.st_mtime),
            size=st.st_size,
        )

    def _write(self, path: str, content: str, encoding: str) -> None:
        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # newline="" keeps the caller's line endings untouched
            with open(target, "w", encoding=encoding.lower(), newline="") as f:
                f.write(content)
        except (OSError, LookupError) as e:
            raise FileAccessError(path, str(e)) from e

    async def read_file(self, path: str) -> FileContent:
        return await asyncio.to_thread(self._read, path)

    async def get_file_metadata(self, path: str) -> FileMetadata:
        return await asyncio.to_thread(self._metadata, path)

    async def write_file(self, path: str, content: str, encoding: str = "UTF-8") -> None:
        await asyncio.to_thread(self._write, path, content, encoding)
