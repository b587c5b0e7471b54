"""Lazy content loading guarded by a per-tab state machine.

Every load request takes a fresh token from the tab. A fetched body is
applied only while its token is the newest one issued for that tab and
the tab is still the active one; anything else is discarded. States
move ``UNLOADED -> LOADING -> LOADED`` with ``LOADING -> ERROR ->
LOADING`` as the retry path. ``LOADING -> UNLOADED`` abandons a load
whose tab was switched away from, so the next activation fetches again.
"""

from typing import Dict, FrozenSet, Optional

from core.errors import IllegalTransition, StoreError, handle_error
from core.hashing import hash_content
from core.logging import logger
from core.utils import normalize_line_endings
from editor.buffers import LoadState, Tab, TabRegistry
from persistence.files import FileSystem
from persistence.store import SessionStore

TRANSITIONS: Dict[LoadState, FrozenSet[LoadState]] = {
    LoadState.UNLOADED: frozenset({LoadState.LOADING}),
    LoadState.LOADING: frozenset({LoadState.LOADED, LoadState.ERROR, LoadState.UNLOADED}),
    LoadState.ERROR: frozenset({LoadState.LOADING}),
    LoadState.LOADED: frozenset(),
}


class LoadTracker:
    """Owns load states and request tokens of the tabs in a registry."""

    def __init__(self, registry: TabRegistry) -> None:
        self.registry = registry
        self.rejected = 0

    def state(self, tab_id: str) -> Optional[LoadState]:
        tab = self.registry.get(tab_id)
        return tab.load_state if tab else None

    def transition(self, tab_id: str, new_state: LoadState) -> bool:
        """
        Move a tab to ``new_state`` if the state machine allows it.

        Illegal requests are logged and ignored.

        Returns:
            True if the state changed.
        """
        tab = self.registry.get(tab_id)
        if tab is None:
            return False

        if new_state not in TRANSITIONS[tab.load_state]:
            self.rejected += 1
            err = IllegalTransition(f"{tab.load_state.value} -> {new_state.value}")
            handle_error("Load:Transition", err, tab_id=tab_id)
            return False

        tab.load_state = new_state
        tab.content_loaded = new_state == LoadState.LOADED
        return True

    def issue_token(self, tab_id: str) -> int:
        """Hand out the next request token for a tab."""
        tab = self.registry.get(tab_id)
        if tab is None:
            return 0
        tab.load_token += 1
        return tab.load_token

    def is_current(self, tab_id: str, token: int) -> bool:
        tab = self.registry.get(tab_id)
        return tab is not None and tab.load_token == token

    def force_loaded(self, tab_id: str) -> None:
        """Mark content as populated by a path other than a lazy load."""
        tab = self.registry.get(tab_id)
        if tab is None:
            return
        tab.load_state = LoadState.LOADED
        tab.content_loaded = True
        # Outstanding requests become stale
        tab.load_token += 1


class ContentLoader:
    """Fetches tab bodies from the store the first time a tab is shown."""

    def __init__(self, registry: TabRegistry, store: SessionStore, files: FileSystem) -> None:
        self.registry = registry
        self.store = store
        self.files = files
        self.tracker = LoadTracker(registry)
        self.discarded = 0

    async def load(self, tab_id: str) -> bool:
        """
        Load a tab's body if it has not been loaded yet.

        Args:
            tab_id: Tab to populate.

        Returns:
            True if this call installed content into the registry.
        """
        tab = self.registry.get(tab_id)
        if tab is None or tab.load_state == LoadState.LOADED:
            return False

        if tab.load_state != LoadState.LOADING:
            if not self.tracker.transition(tab_id, LoadState.LOADING):
                return False
        token = self.tracker.issue_token(tab_id)

        try:
            raw = await self.store.load_tab_content(tab_id)
        except Exception as e:
            if self.tracker.is_current(tab_id, token):
                self.tracker.transition(tab_id, LoadState.ERROR)
            handle_error("Session:Load", e, tab_id=tab_id)
            return False

        if not self._still_wanted(tab_id, token):
            return False

        content = normalize_line_endings(raw or "")
        tab = self.registry.get(tab_id)
        last_saved_hash = await self._last_saved_hash(tab, content)

        # The disk read above may have been overtaken as well
        if not self._still_wanted(tab_id, token):
            return False

        if not self.tracker.transition(tab_id, LoadState.LOADED):
            return False
        self.registry.apply_loaded_content(tab_id, content, last_saved_hash)
        return True

    async def load_for_save(self, tab_id: str) -> bool:
        """
        Make sure a tab holds its real body before it is written to disk.

        Unlike load(), the result is installed even when the tab is in
        the background, since the caller needs the text right now.

        Returns:
            True if the tab's content is loaded.
        """
        tab = self.registry.get(tab_id)
        if tab is None:
            return False
        if tab.content_loaded:
            return True

        try:
            raw = await self.store.load_tab_content(tab_id)
            if raw is None:
                raise StoreError(f"No stored content for {tab_id}")
        except Exception as e:
            handle_error("Session:Load", e, tab_id=tab_id)
            return False

        content = normalize_line_endings(raw)
        last_saved_hash = await self._last_saved_hash(tab, content)

        tab = self.registry.get(tab_id)
        if tab is None:
            return False
        # A lazy load may have finished while we were reading
        if tab.content_loaded:
            return True
        self.tracker.force_loaded(tab_id)
        self.registry.apply_loaded_content(tab_id, content, last_saved_hash)
        return True

    def _still_wanted(self, tab_id: str, token: int) -> bool:
        tab = self.registry.get(tab_id)
        if tab is None or not self.tracker.is_current(tab_id, token):
            self.discarded += 1
            logger.debug(f"Discarding stale load for {tab_id} (token {token})")
            return False

        if not self.registry.is_active(tab_id):
            self.discarded += 1
            logger.debug(f"Discarding load for inactive tab {tab_id}")
            self.tracker.transition(tab_id, LoadState.UNLOADED)
            return False

        if tab.load_state != LoadState.LOADING:
            self.discarded += 1
            return False
        return True

    async def _last_saved_hash(self, tab: Tab, content: str) -> Optional[str]:
        """
        Fingerprint of what is actually on disk for a dirty tab.

        The store can lag behind the file, so a tab restored as dirty
        re-reads its file instead of trusting the stored body.
        """
        if tab.path is None:
            return None
        if not tab.is_dirty:
            return hash_content(content)

        try:
            result = await self.files.read_file(tab.path)
            return hash_content(normalize_line_endings(result.content))
        except Exception as e:
            handle_error("File:Read", e, path=tab.path)
            return hash_content(content)
