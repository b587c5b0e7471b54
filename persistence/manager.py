"""Coalescing session writer.

At most one save runs at a time. Requests that arrive while a save is
in flight set a pending flag; when the running save finishes, exactly
one more save is performed if the flag was set, repeating until no
request accumulated during the last cycle.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from core.config import Config, get_config
from core.errors import Severity, handle_error
from core.logging import logger
from editor.buffers import Tab, TabRegistry
from persistence.records import TabRecord
from persistence.store import SessionStore


def needs_content(tab: Tab) -> bool:
    """Whether the outgoing record must carry the buffer body."""
    if not tab.content_loaded:
        return False
    return not tab.is_persisted or tab.content_changed or tab.path is None


def tab_to_record(
    tab: Tab,
    sort_index: int,
    mru_position: Optional[int] = None,
    original_index: Optional[int] = None
) -> TabRecord:
    """Project a tab onto its store record, omitting unchanged bodies."""
    return TabRecord(
        id=tab.id,
        title=tab.title,
        content=tab.content if needs_content(tab) else None,
        is_dirty=tab.is_dirty,
        path=tab.path,
        scroll_percentage=tab.scroll_percentage,
        created=tab.created,
        modified=tab.modified,
        is_pinned=tab.is_pinned,
        custom_title=tab.custom_title,
        file_check_failed=tab.file_check_failed,
        file_check_performed=tab.file_check_performed,
        mru_position=mru_position,
        sort_index=sort_index,
        original_index=original_index,
    )


@dataclass
class SaveSnapshot:
    """Registry state captured when a save cycle starts."""
    active: List[TabRecord]
    closed: List[TabRecord]
    sent_active: Dict[str, Optional[str]]
    sent_closed: Dict[str, Optional[str]]
    revision: int


def take_snapshot(registry: TabRegistry) -> SaveSnapshot:
    mru_positions = {tab_id: i for i, tab_id in enumerate(registry.mru)}

    active, sent_active = [], {}
    for i, tab in enumerate(registry.tabs):
        record = tab_to_record(tab, sort_index=i, mru_position=mru_positions.get(tab.id))
        active.append(record)
        sent_active[tab.id] = tab.content_hash if record.content is not None else None

    closed, sent_closed = [], {}
    for i, entry in enumerate(registry.closed):
        record = tab_to_record(entry.tab, sort_index=i, original_index=entry.index)
        closed.append(record)
        sent_closed[entry.tab.id] = entry.tab.content_hash if record.content is not None else None

    return SaveSnapshot(active, closed, sent_active, sent_closed, registry.revision)


class PersistenceManager:
    """Serializes the tab registry to the session store."""

    def __init__(self, registry: TabRegistry, store: SessionStore, config: Optional[Config] = None) -> None:
        self.registry = registry
        self.store = store
        self.config = config or get_config()
        self.is_saving = False
        self.pending_save = False
        self.save_count = 0
        self.failure_count = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._autosave_task: Optional[asyncio.Task] = None
        self._background: set = set()

    async def request_save(self) -> None:
        """
        Ask for the session to be written.

        Safe to call arbitrarily often; overlapping requests collapse
        into at most one follow-up cycle.
        """
        if not self.registry.session_dirty:
            return

        if self.is_saving:
            self.pending_save = True
            return

        self.is_saving = True
        self._idle.clear()
        try:
            await self._execute_save()
            while self.pending_save:
                self.pending_save = False
                if self.registry.session_dirty:
                    await self._execute_save()
        finally:
            self.is_saving = False
            self._idle.set()

    async def _execute_save(self) -> bool:
        snapshot = take_snapshot(self.registry)
        try:
            self.save_count += 1
            await self.store.save_session(snapshot.active, snapshot.closed)
        except Exception as e:
            self.failure_count += 1
            self.registry.session_dirty = True
            handle_error("Session:Save", e, Severity.WARNING)
            return False

        self._apply_success(snapshot)
        return True

    def _apply_success(self, snapshot: SaveSnapshot) -> None:
        for tab_id, sent_hash in snapshot.sent_active.items():
            self.registry.mark_tab_persisted(tab_id, sent_hash)
        for tab_id, sent_hash in snapshot.sent_closed.items():
            self.registry.mark_closed_persisted(tab_id, sent_hash)

        changed_since = self.registry.revision != snapshot.revision
        self.registry.session_dirty = changed_since or self.registry.has_unsaved_content()

    # Triggers --------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def schedule_save(self) -> None:
        """Debounced request: the save starts once calls stop arriving."""
        loop = asyncio.get_running_loop()
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        delay = self.config.session_save_debounce_ms / 1000.0
        self._debounce_handle = loop.call_later(delay, self._debounce_fired)

    def _debounce_fired(self) -> None:
        self._debounce_handle = None
        self._spawn(self.request_save())

    def start_autosave(self) -> None:
        """Start the periodic save trigger, if configured."""
        interval = self.config.session_autosave_interval_ms
        if interval <= 0 or self._autosave_task is not None:
            return
        self._autosave_task = asyncio.get_running_loop().create_task(self._autosave_loop(interval / 1000.0))

    async def _autosave_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.request_save()

    async def wait_idle(self) -> None:
        """Wait until no save is in flight."""
        await self._idle.wait()

    async def flush(self) -> None:
        """Write any outstanding changes now; used at shutdown."""
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        await self.wait_idle()
        await self.request_save()
        await self.wait_idle()

    async def stop(self) -> None:
        """Cancel timers and flush."""
        if self._autosave_task is not None:
            self._autosave_task.cancel()
            try:
                await self._autosave_task
            except asyncio.CancelledError:
                pass
            self._autosave_task = None
        await self.flush()
        logger.debug(f"Persistence stopped after {self.save_count} saves")

    def pending_tasks(self) -> Tuple[asyncio.Task, ...]:
        return tuple(self._background)
