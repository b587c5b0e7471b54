"""Session restore at startup."""

from typing import Awaitable, Callable, List, Optional

from core.config import Config, get_config
from core.errors import SessionCorruptError, handle_error
from core.logging import logger
from editor.buffers import ClosedTab, LoadState, Tab, TabRegistry
from editor.loading import ContentLoader
from persistence.records import SessionData, TabRecord
from persistence.store import SessionStore

TabInitializer = Callable[[str], Awaitable[None]]


def record_to_tab(record: TabRecord) -> Tab:
    """
    Rebuild a tab from its store record.

    The body stays unloaded; ``last_saved_hash`` is unknown until the
    content loader has seen the text.
    """
    if not record.id or record.title is None:
        raise SessionCorruptError(f"Malformed tab record: {record!r}")

    return Tab(
        id=record.id,
        title=record.title,
        original_title=record.title,
        content="",
        path=record.path,
        custom_title=record.custom_title,
        last_saved_hash=None,
        is_dirty=record.is_dirty or record.path is None,
        scroll_percentage=record.scroll_percentage or 0.0,
        is_pinned=record.is_pinned,
        created=record.created,
        modified=record.modified,
        file_check_failed=record.file_check_failed,
        file_check_performed=record.file_check_performed,
        content_loaded=False,
        content_changed=False,
        is_persisted=True,
        load_state=LoadState.UNLOADED,
    )


def _sorted(records: List[TabRecord]) -> List[TabRecord]:
    return sorted(records, key=lambda r: r.sort_index if r.sort_index is not None else 0)


class SessionLoader:
    """Rebuilds the registry from the store."""

    def __init__(
        self,
        registry: TabRegistry,
        store: SessionStore,
        loader: ContentLoader,
        config: Optional[Config] = None,
        initializer: Optional[TabInitializer] = None
    ) -> None:
        self.registry = registry
        self.store = store
        self.loader = loader
        self.config = config or get_config()
        self.initializer = initializer

    async def load(self) -> TabRegistry:
        """
        Replace the registry with the persisted session.

        Falls back to a single fresh tab if the session cannot be read.

        Returns:
            The populated registry.
        """
        try:
            session = await self.store.restore_session()
            if not isinstance(session, SessionData):
                raise SessionCorruptError(f"Unexpected session payload: {type(session).__name__}")
            self._install(session)
        except Exception as e:
            handle_error("Session:Load", e)
            self.registry.reset()
            self.registry.activate(self.registry.add_tab())
            return self.registry

        active = self.registry.active()
        if active is not None and active.load_state == LoadState.UNLOADED:
            await self.loader.load(active.id)
            if self.initializer is not None:
                try:
                    await self.initializer(active.id)
                except Exception as e:
                    handle_error("Session:Init", e, tab_id=active.id)

        self.registry.session_dirty = self.registry.has_unsaved_content()
        return self.registry

    def _install(self, session: SessionData) -> None:
        active_records = _sorted(session.active_tabs)
        closed_records = _sorted(session.closed_tabs)

        tabs = [record_to_tab(r) for r in active_records]
        closed = [
            ClosedTab(tab=record_to_tab(r), index=r.original_index or 0)
            for r in closed_records
        ]

        by_mru = sorted(
            (r for r in active_records if r.mru_position is not None),
            key=lambda r: r.mru_position,
        )
        mru = [r.id for r in by_mru] or [t.id for t in tabs]

        behavior = self.config.session_startup_behavior
        active_id = None
        if tabs:
            if behavior == "last-focused":
                active_id = mru[0] if mru else tabs[0].id
            elif behavior != "new":
                active_id = tabs[0].id

        self.registry.replace_session(tabs, closed, mru, active_id)
        logger.info(f"Restored session: {len(tabs)} tabs, {len(closed)} closed, startup={behavior}")

        if not tabs or behavior == "new":
            self.registry.activate(self.registry.add_tab())
