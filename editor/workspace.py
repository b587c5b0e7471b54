"""Composition root: one registry wired to its loaders, writer and watchers."""

import asyncio
import os
from typing import Any, Dict, Optional

from core.config import Config, get_config
from core.errors import FileAccessError, NotifyFn, TabNotFound, handle_error, log_notice
from core.logging import logger
from core.utils import apply_line_ending, byte_size, detect_line_ending, normalize_line_endings
from editor.buffers import LoadState, TabEvent, TabRegistry
from editor.loading import ContentLoader
from persistence.files import FileSystem
from persistence.manager import PersistenceManager
from persistence.session import SessionLoader
from persistence.store import SessionStore
from watcher.reconcile import FileWatchReconciler
from watcher.watch import FileWatchBridge, Subscription

# Events that change what would be written to the store
_PERSISTED_EVENTS = {
    "added", "closed", "reopened", "reordered", "content", "scroll", "pin",
    "title", "path", "metadata", "line_ending", "file_check", "saved",
    "reloaded", "mru", "closed_history",
}


class TabWorkspace:
    """High-level tab operations for an editor host.

    Every mutation goes through the registry; a registry listener turns
    persisted-state changes into debounced session saves.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[SessionStore] = None,
        files: Optional[FileSystem] = None,
        watch_bridge: Optional[FileWatchBridge] = None,
        notify: Optional[NotifyFn] = None
    ) -> None:
        if store is None or files is None:
            raise ValueError("TabWorkspace needs a session store and a file system")

        self.config = config or get_config()
        self.store = store
        self.files = files
        self.notify = notify or log_notice
        self.registry = TabRegistry(self.config)
        self.loader = ContentLoader(self.registry, store, files)
        self.manager = PersistenceManager(self.registry, store, self.config)
        self.reconciler = FileWatchReconciler(self.registry, files, self.loader.tracker, self.notify)
        self.session = SessionLoader(
            self.registry, store, self.loader, self.config, initializer=self._initialize_file_state
        )
        self.watch_bridge = watch_bridge
        self._watches: Dict[str, Subscription] = {}
        self._started = False

        self.registry.subscribe(self._on_tab_event)

    def _on_tab_event(self, event: TabEvent) -> None:
        if not self._started or event.kind not in _PERSISTED_EVENTS:
            return
        try:
            self.manager.schedule_save()
        except RuntimeError:
            # No running loop, e.g. a synchronous caller during teardown
            logger.debug(f"Save not scheduled for {event.kind}")

    def _require(self, tab_id: str):
        tab = self.registry.get(tab_id)
        if tab is None:
            raise TabNotFound(tab_id)
        return tab

    # Lifecycle -------------------------------------------------------

    async def start(self) -> TabRegistry:
        """Restore the previous session and start periodic saving."""
        await self.session.load()
        for tab in self.registry.tabs:
            self._watch(tab.id)
        self._started = True
        self.manager.start_autosave()
        logger.info(f"Workspace started with {len(self.registry.tabs)} tabs")
        return self.registry

    async def shutdown(self) -> None:
        """Write outstanding changes and release watchers."""
        await self.manager.stop()
        if self.watch_bridge is not None:
            for sub in list(self._watches.values()):
                self.watch_bridge.unwatch(sub)
            self.watch_bridge.stop()
        self._watches.clear()
        self._started = False

    # Watches ---------------------------------------------------------

    def _watch(self, tab_id: str) -> None:
        tab = self.registry.get(tab_id)
        if self.watch_bridge is None or tab is None or tab.path is None:
            return
        current = self._watches.get(tab_id)
        if current is not None:
            if current.path == tab.path:
                return
            self.watch_bridge.unwatch(current)
            del self._watches[tab_id]
        try:
            sub = self.watch_bridge.watch(tab.path, self.reconciler.handle_change)
        except Exception as e:
            handle_error("FileWatcher:Watch", e, path=tab.path)
            return
        if sub is not None:
            self._watches[tab_id] = sub

    def _unwatch(self, tab_id: str) -> None:
        sub = self._watches.pop(tab_id, None)
        if sub is not None and self.watch_bridge is not None:
            self.watch_bridge.unwatch(sub)

    async def _initialize_file_state(self, tab_id: str) -> None:
        await self.reconciler.initialize_tab(tab_id)
        self._watch(tab_id)

    # Tab operations --------------------------------------------------

    async def activate(self, tab_id: str) -> bool:
        """
        Switch to a tab, loading its body on first view.

        Returns:
            True if the tab ends up active.
        """
        tab = self._require(tab_id)
        self.registry.activate(tab_id)
        if tab.load_state != LoadState.LOADED:
            loaded = await self.loader.load(tab_id)
            if loaded and self.registry.is_active(tab_id):
                await self._initialize_file_state(tab_id)
        return self.registry.is_active(tab_id)

    def new_tab(self, content: str = "") -> str:
        """Open and activate an empty buffer."""
        tab_id = self.registry.add_tab(content=content)
        self.registry.activate(tab_id)
        return tab_id

    async def open_file(self, path: str) -> Optional[str]:
        """
        Open ``path`` in a tab, reusing an existing tab bound to it.

        Returns:
            The tab id, or None if the file could not be read.
        """
        path = os.path.abspath(path)
        existing = self.registry.tabs_for_path(path)
        if existing:
            await self.activate(existing[0].id)
            return existing[0].id

        try:
            result = await self.files.read_file(path)
            meta = await self.files.get_file_metadata(path)
        except FileAccessError as e:
            handle_error("File:Read", e, path=path)
            return None

        tab_id = self.registry.add_tab(
            title=os.path.basename(path),
            content=normalize_line_endings(result.content),
            path=path,
        )
        self.registry.update_line_ending(tab_id, detect_line_ending(result.content))
        self.registry.update_file_info(tab_id, result.encoding, byte_size(result.content))
        self.registry.update_metadata(tab_id, meta.created, meta.modified)
        self.registry.remember_file_state(tab_id, meta.modified)
        self.registry.set_file_check_status(tab_id, True, False)
        self.registry.activate(tab_id)
        self._watch(tab_id)
        return tab_id

    def close_tab(self, tab_id: str, history: Any = None) -> bool:
        self._unwatch(tab_id)
        return self.registry.close_tab(tab_id, history)

    async def reopen_last_closed(self) -> Optional[str]:
        """Reopen the newest closed tab and bring it up to date."""
        entry = self.registry.reopen_last_closed()
        if entry is None:
            return None
        tab_id = entry.tab.id
        if entry.tab.load_state != LoadState.LOADED:
            await self.loader.load(tab_id)
        if self.registry.is_active(tab_id):
            await self._initialize_file_state(tab_id)
        return tab_id

    def edit(self, tab_id: str, content: str) -> bool:
        self._require(tab_id)
        return self.registry.update_content(tab_id, normalize_line_endings(content))

    async def save_tab(self, tab_id: str, path: Optional[str] = None) -> bool:
        """
        Write a buffer to its file, or to ``path`` for "save as".

        Returns:
            True if the file was written.
        """
        tab = self._require(tab_id)
        target = os.path.abspath(path) if path else tab.path
        if target is None:
            raise ValueError("A path is required to save an untitled tab")

        # A background tab restored from the session holds placeholder text
        if not await self.loader.load_for_save(tab_id):
            return False
        tab = self._require(tab_id)

        text = apply_line_ending(tab.content, tab.line_ending)
        try:
            await self.files.write_file(target, text, tab.encoding)
        except Exception as e:
            handle_error("File:Write", e, path=target)
            return False

        if target != tab.path:
            self.registry.save_tab_complete(tab_id, target, os.path.basename(target), tab.line_ending)
        self.registry.mark_as_saved(tab_id)
        self.registry.update_file_info(tab_id, size_bytes=byte_size(text))
        await self.reconciler.refresh_metadata(tab_id)
        self.registry.set_file_check_status(tab_id, True, False)
        self._watch(tab_id)
        return True

    async def wait_for_saves(self) -> None:
        """Let any debounced save fire and finish."""
        await asyncio.sleep(self.config.session_save_debounce_ms / 1000.0 + 0.01)
        for task in self.manager.pending_tasks():
            await task
        await self.manager.wait_idle()
