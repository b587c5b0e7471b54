"""Reconcile open tabs with changes made to their files on disk."""

from typing import Dict, List, Optional, Set

from core.errors import Notice, NotifyFn, Severity, handle_error, safe_notify
from core.hashing import hash_content
from core.logging import logger
from core.utils import TextMetrics, byte_size, calculate_text_metrics, detect_line_ending, normalize_line_endings
from editor.buffers import Tab, TabRegistry
from editor.loading import LoadTracker
from persistence.files import FileSystem
from persistence.records import FileContent, FileMetadata


class FileWatchReconciler:
    """Applies debounced "path changed" notifications to the registry.

    Dirty tabs are never overwritten: they are flagged and the user is
    told. Clean tabs are reloaded from disk, and every other clean tab
    bound to the same path receives the same text.
    """

    def __init__(
        self,
        registry: TabRegistry,
        files: FileSystem,
        tracker: Optional[LoadTracker] = None,
        notify: Optional[NotifyFn] = None
    ) -> None:
        self.registry = registry
        self.files = files
        self.tracker = tracker or LoadTracker(registry)
        self.notify = notify
        self.in_flight: Set[str] = set()
        self.ignored = 0
        self.last_metrics: Dict[str, TextMetrics] = {}

    async def handle_change(self, path: str) -> None:
        """
        React to a change notification for ``path``.

        Notifications for a path that is already being reconciled are
        ignored.
        """
        if path in self.in_flight:
            self.ignored += 1
            logger.debug(f"Ignoring re-entrant change for {path}")
            return

        self.in_flight.add(path)
        try:
            await self._reconcile(path)
        except Exception as e:
            handle_error("FileWatcher:Watch", e, path=path)
        finally:
            self.in_flight.discard(path)

    async def _reconcile(self, path: str) -> None:
        tabs = self.registry.tabs_for_path(path)
        if not tabs:
            return

        try:
            meta = await self.files.get_file_metadata(path)
        except Exception as e:
            handle_error("File:Metadata", e, path=path)
            for tab in self.registry.tabs_for_path(path):
                self.registry.set_file_check_status(tab.id, True, True)
            return

        changed = await self._changed_tabs(path, meta)
        if not changed:
            return

        dirty = [t for t in changed if t.is_dirty]
        clean = [t for t in changed if not t.is_dirty]

        if dirty:
            for tab in dirty:
                self.registry.set_file_check_status(tab.id, True, True)
                # Warn once per disk change, not on every later event
                self._remember(tab.id, meta)
            names = ", ".join(t.display_title for t in dirty)
            safe_notify(self.notify, Notice(
                Severity.WARNING,
                f"File changed on disk: {names}. You have unsaved changes.",
                [t.id for t in dirty],
            ))

        if clean:
            try:
                result = await self.files.read_file(path)
            except Exception as e:
                handle_error("File:Read", e, path=path)
                return

            reloaded = self._apply_disk_content(path, result, [t.id for t in clean], force=False)
            for tab_id in reloaded:
                self._remember(tab_id, meta)
            if reloaded:
                names = ", ".join(self.registry.get(i).display_title for i in reloaded)
                safe_notify(self.notify, Notice(Severity.INFO, f"Reloaded {names} from disk", reloaded))

    async def _changed_tabs(self, path: str, meta: FileMetadata) -> List[Tab]:
        tabs = self.registry.tabs_for_path(path)
        changed = [t for t in tabs if t.file_modified is not None and meta.modified != t.file_modified]

        unknown = [t for t in tabs if t.file_modified is None]
        if unknown:
            # No remembered mtime: compare what is on disk with the last saved text
            try:
                result = await self.files.read_file(path)
            except Exception as e:
                handle_error("File:Read", e, path=path)
                return changed
            disk_hash = hash_content(normalize_line_endings(result.content))
            changed.extend(t for t in unknown if t.last_saved_hash != disk_hash)
        return changed

    def _apply_disk_content(self, path: str, result: FileContent, tab_ids: List[str], force: bool) -> List[str]:
        raw = result.content
        content = normalize_line_endings(raw)
        line_ending = detect_line_ending(raw)
        encoding = result.encoding.upper()
        size = byte_size(raw)
        metrics = calculate_text_metrics(content)

        applied = []
        for tab_id in tab_ids:
            tab = self.registry.get(tab_id)
            # The tab may have been closed, rebound or edited while we read
            if tab is None or tab.path != path or (tab.is_dirty and not force):
                continue
            self.tracker.force_loaded(tab_id)
            self.registry.reload_tab_content(tab_id, content, line_ending, encoding, size)
            self.last_metrics[tab_id] = metrics
            applied.append(tab_id)
        return applied

    def _remember(self, tab_id: str, meta: FileMetadata) -> None:
        self.registry.update_metadata(tab_id, meta.created, meta.modified)
        self.registry.remember_file_state(tab_id, meta.modified)

    # Explicit operations ---------------------------------------------

    async def reload_from_disk(self, tab_id: str) -> bool:
        """
        Replace a tab's buffer with its file, discarding local edits.

        Returns:
            True if the buffer was replaced.
        """
        tab = self.registry.get(tab_id)
        if tab is None or tab.path is None:
            return False

        path = tab.path
        try:
            result = await self.files.read_file(path)
        except Exception as e:
            handle_error("File:Read", e, path=path)
            self.registry.set_file_check_status(tab_id, True, True)
            return False

        if not self._apply_disk_content(path, result, [tab_id], force=True):
            return False
        await self.refresh_metadata(tab_id)
        return True

    async def keep_local(self, tab_id: str) -> bool:
        """Resolve a conflict in favour of the buffer; the tab stays dirty."""
        tab = self.registry.get(tab_id)
        if tab is None or tab.path is None:
            return False
        self.registry.set_file_check_status(tab_id, True, False)
        await self.refresh_metadata(tab_id)
        return True

    async def refresh_metadata(self, tab_id: str) -> None:
        tab = self.registry.get(tab_id)
        if tab is None or tab.path is None:
            return
        try:
            meta = await self.files.get_file_metadata(tab.path)
        except Exception as e:
            handle_error("File:Metadata", e, path=tab.path)
            return
        self._remember(tab_id, meta)

    async def check_file_exists(self, tab_id: str) -> bool:
        tab = self.registry.get(tab_id)
        if tab is None or tab.path is None:
            return False
        try:
            await self.files.get_file_metadata(tab.path)
            exists = True
        except Exception:
            exists = False
        self.registry.set_file_check_status(tab_id, True, not exists)
        return exists

    async def check_and_reload_if_changed(self, tab_id: str) -> bool:
        """
        Return True if a clean tab's file was modified since it was last seen.

        Dirty tabs always report False so local edits are never lost.
        """
        tab = self.registry.get(tab_id)
        if tab is None or tab.path is None or tab.is_dirty:
            return False

        try:
            meta = await self.files.get_file_metadata(tab.path)
        except Exception as e:
            handle_error("File:Metadata", e, path=tab.path)
            self.registry.set_file_check_status(tab_id, True, True)
            return False

        remembered = tab.file_modified or tab.modified
        return bool(meta.modified and remembered and meta.modified != remembered)

    async def initialize_tab(self, tab_id: str) -> None:
        """Bring a freshly activated tab in line with its file."""
        tab = self.registry.get(tab_id)
        if tab is None or tab.path is None:
            return

        if not tab.is_dirty and await self.check_and_reload_if_changed(tab_id):
            path = tab.path
            try:
                result = await self.files.read_file(path)
                self._apply_disk_content(path, result, [tab_id], force=False)
            except Exception as e:
                handle_error("File:Read", e, path=path)

        await self.refresh_metadata(tab_id)
        await self.check_file_exists(tab_id)
