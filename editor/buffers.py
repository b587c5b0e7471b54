"""Tab registry: open buffers, MRU ordering and closed-tab history."""

import re
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from core.config import Config, get_config
from core.hashing import EMPTY_HASH, hash_content
from core.logging import logger
from core.utils import LF, byte_size, normalize_line_endings, smart_title, utc_timestamp

_NEW_TAB_RE = re.compile(r"New-(\d+)")


class LoadState(str, Enum):
    """Lazy content load state of a tab."""
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass
class Cursor:
    """Selection range inside a buffer."""
    anchor: int = 0
    head: int = 0


@dataclass
class Tab:
    """One open document buffer."""
    id: str
    title: str
    content: str = ""
    path: Optional[str] = None
    original_title: str = ""
    custom_title: Optional[str] = None
    content_hash: str = EMPTY_HASH
    last_saved_hash: Optional[str] = None  # None: never written to a file
    is_dirty: bool = False
    size_bytes: int = 0
    cursor: Cursor = field(default_factory=Cursor)
    scroll_percentage: float = 0.0
    top_line: int = 1
    is_pinned: bool = False
    created: Optional[str] = None
    modified: Optional[str] = None
    file_modified: Optional[str] = None  # disk mtime last seen, not persisted
    line_ending: str = LF
    encoding: str = "UTF-8"
    file_check_failed: bool = False
    file_check_performed: bool = False
    content_loaded: bool = True
    content_changed: bool = False
    is_persisted: bool = False
    load_state: LoadState = LoadState.LOADED
    load_token: int = 0

    @property
    def display_title(self) -> str:
        return self.custom_title or self.title

    def snapshot(self) -> "Tab":
        """Detached copy for the closed-tab history."""
        return replace(self, cursor=replace(self.cursor))


@dataclass
class ClosedTab:
    """A closed tab kept for reopening."""
    tab: Tab
    index: int
    history: Any = None  # opaque editor undo history


@dataclass
class TabEvent:
    """Change notification delivered to registry listeners."""
    kind: str
    tab_id: Optional[str] = None


Listener = Callable[[TabEvent], None]


def compute_dirty(tab: Tab) -> bool:
    """A buffer without a file is always dirty; otherwise compare fingerprints."""
    return tab.path is None or tab.content_hash != tab.last_saved_hash


class TabRegistry:
    """Authoritative in-memory list of open tabs.

    All mutation goes through the named operations below. Each one
    returns whether anything changed, marks the session dirty when the
    persisted projection is affected, and notifies listeners.
    """

    def __init__(self, config: Optional[Config] = None) -> None:
        self.config = config or get_config()
        self.tabs: List[Tab] = []
        self.active_id: Optional[str] = None
        self.mru: List[str] = []
        self.closed: Deque[ClosedTab] = deque(maxlen=self.config.session_closed_history_capacity)
        self.session_dirty = False
        self.revision = 0
        self._listeners: List[Listener] = []

    # Observers -------------------------------------------------------

    def subscribe(self, listener: Listener) -> None:
        """Register a callback for tab events."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        """Remove a previously registered callback."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, kind: str, tab_id: Optional[str] = None) -> None:
        event = TabEvent(kind, tab_id)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Tab listener error: {e}")

    def _changed(self, kind: str, tab_id: Optional[str] = None) -> None:
        self.session_dirty = True
        self.revision += 1
        self._emit(kind, tab_id)

    # Queries ---------------------------------------------------------

    def get(self, tab_id: str) -> Optional[Tab]:
        """
        Get a tab by id.

        Args:
            tab_id: Tab identifier.

        Returns:
            The tab or None if not open.
        """
        for tab in self.tabs:
            if tab.id == tab_id:
                return tab
        return None

    def index_of(self, tab_id: str) -> int:
        for i, tab in enumerate(self.tabs):
            if tab.id == tab_id:
                return i
        return -1

    def list(self) -> List[str]:
        """List open tab ids in display order."""
        return [t.id for t in self.tabs]

    def active(self) -> Optional[Tab]:
        """Get the active tab, if any."""
        if self.active_id:
            return self.get(self.active_id)
        return None

    def is_active(self, tab_id: str) -> bool:
        return self.active_id == tab_id

    def tabs_for_path(self, path: str) -> List[Tab]:
        """All open tabs bound to ``path``."""
        return [t for t in self.tabs if t.path == path]

    def has_unsaved_content(self) -> bool:
        """True while any pathless tab holds text."""
        return any(t.path is None and t.content for t in self.tabs)

    # Tab lifecycle ---------------------------------------------------

    def _next_new_title(self) -> str:
        highest = 0
        for tab in self.tabs:
            match = _NEW_TAB_RE.search(tab.display_title or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return f"New-{highest + 1}"

    def add_tab(self, title: str = "", content: str = "", path: Optional[str] = None) -> str:
        """
        Open a new tab.

        Args:
            title: Display title; blank or ``Untitled`` gets ``New-<n>``.
            content: Initial buffer text.
            path: Backing file, if any.

        Returns:
            The new tab id.
        """
        if not title or title == "Untitled":
            title = self._next_new_title()

        text = normalize_line_endings(content)
        digest = hash_content(text)
        now = utc_timestamp()
        tab = Tab(
            id=str(uuid.uuid4()),
            title=title,
            original_title=title,
            content=text,
            path=path,
            content_hash=digest,
            last_saved_hash=digest if path else None,
            size_bytes=byte_size(text),
            created=now,
            modified=now,
        )
        tab.is_dirty = compute_dirty(tab)

        position = self.config.tabs_new_tab_position
        if position == "beginning":
            self.tabs.insert(0, tab)
        elif position == "right" and self.active_id:
            self.tabs.insert(self.index_of(self.active_id) + 1, tab)
        else:
            self.tabs.append(tab)

        self._changed("added", tab.id)
        return tab.id

    def push_mru(self, tab_id: str) -> bool:
        """Move ``tab_id`` to the head of the MRU stack."""
        if self.mru and self.mru[0] == tab_id:
            return False
        self.mru = [tab_id] + [t for t in self.mru if t != tab_id]
        self._changed("mru", tab_id)
        return True

    def activate(self, tab_id: str) -> bool:
        """
        Make a tab the active one.

        Args:
            tab_id: Tab to activate.

        Returns:
            True if the active tab or MRU order changed.
        """
        if self.get(tab_id) is None:
            return False
        changed = self.active_id != tab_id
        self.active_id = tab_id
        changed = self.push_mru(tab_id) or changed
        if changed:
            self._emit("activated", tab_id)
        return changed

    def close_tab(self, tab_id: str, history: Any = None) -> bool:
        """
        Close a tab, remembering it in the closed-tab history.

        Empty pathless buffers are dropped without a history entry.

        Args:
            tab_id: Tab to close.
            history: Editor undo history to keep with the entry.
        """
        index = self.index_of(tab_id)
        if index == -1:
            return False

        tab = self.tabs[index]
        if tab.content or tab.path or not tab.content_loaded:
            self.closed.appendleft(ClosedTab(tab=tab.snapshot(), index=index, history=history))

        del self.tabs[index]
        self.mru = [t for t in self.mru if t != tab_id]

        if self.active_id == tab_id:
            if self.mru:
                self.active_id = self.mru[0]
            elif self.tabs:
                self.active_id = self.tabs[min(index, len(self.tabs) - 1)].id
            else:
                self.active_id = None

        self._changed("closed", tab_id)
        return True

    def reopen_closed_tab(self, history_index: int = 0) -> Optional[ClosedTab]:
        """
        Reopen an entry of the closed-tab history near its old position.

        Args:
            history_index: Position in the history, 0 is the newest.

        Returns:
            The removed history entry, or None if the index is invalid.
        """
        if history_index < 0 or history_index >= len(self.closed):
            return None

        entry = self.closed[history_index]
        del self.closed[history_index]

        if self.get(entry.tab.id) is not None:
            logger.warning(f"Closed tab {entry.tab.id} is already open")
            self._changed("closed_history")
            return None

        insert_at = min(entry.index, len(self.tabs))
        self.tabs.insert(insert_at, entry.tab)
        self.active_id = entry.tab.id
        self.push_mru(entry.tab.id)
        self._changed("reopened", entry.tab.id)
        return entry

    def reopen_last_closed(self) -> Optional[ClosedTab]:
        """Reopen the most recently closed tab."""
        if not self.closed:
            return None
        return self.reopen_closed_tab(0)

    def reorder_tabs(self, ordered_ids: Iterable[str]) -> bool:
        """
        Reorder tabs to match ``ordered_ids``.

        The ids must be a permutation of the open tab ids.
        """
        ordered_ids = list(ordered_ids)
        if sorted(ordered_ids) != sorted(self.list()):
            logger.warning("Ignoring reorder request that does not match open tabs")
            return False
        if ordered_ids == self.list():
            return False

        by_id: Dict[str, Tab] = {t.id: t for t in self.tabs}
        self.tabs = [by_id[tab_id] for tab_id in ordered_ids]
        self._changed("reordered")
        return True

    # Buffer updates --------------------------------------------------

    def update_content(self, tab_id: str, content: str) -> bool:
        """
        Replace the text of a buffer.

        Args:
            tab_id: Tab to update.
            content: New text content.

        Returns:
            True if the text changed.
        """
        tab = self.get(tab_id)
        if tab is None:
            return False

        digest = hash_content(content)
        if tab.content_loaded and digest == tab.content_hash:
            return False

        if tab.path is None:
            tab.title = smart_title(
                content, tab.original_title or tab.title, self.config.tabs_smart_title_max_length
            )

        tab.content = content
        tab.content_hash = digest
        tab.content_loaded = True
        tab.load_state = LoadState.LOADED
        tab.content_changed = True
        tab.is_dirty = compute_dirty(tab)
        tab.size_bytes = byte_size(content)
        tab.modified = utc_timestamp()
        self._changed("content", tab_id)
        return True

    def update_scroll(self, tab_id: str, percentage: float, top_line: Optional[int] = None) -> bool:
        tab = self.get(tab_id)
        if tab is None:
            return False

        significant = abs(tab.scroll_percentage - percentage) > 0.001 or (
            top_line is not None and abs((tab.top_line or 0) - top_line) > 0.01
        )
        if not significant:
            return False

        tab.scroll_percentage = percentage
        if top_line is not None:
            tab.top_line = top_line
        self._changed("scroll", tab_id)
        return True

    def update_cursor(self, tab_id: str, anchor: int, head: int) -> bool:
        """Cursor moves stay in memory and do not dirty the session."""
        tab = self.get(tab_id)
        if tab is None:
            return False
        if tab.cursor.anchor == anchor and tab.cursor.head == head:
            return False
        tab.cursor = Cursor(anchor, head)
        self._emit("cursor", tab_id)
        return True

    def toggle_pin(self, tab_id: str) -> bool:
        tab = self.get(tab_id)
        if tab is None:
            return False
        tab.is_pinned = not tab.is_pinned
        self._changed("pin", tab_id)
        return True

    def update_tab_title(self, tab_id: str, title: str, custom_title: Optional[str] = None) -> bool:
        tab = self.get(tab_id)
        if tab is None:
            return False
        if tab.title == title and (custom_title is None or tab.custom_title == custom_title):
            return False
        tab.title = title
        if custom_title is not None:
            tab.custom_title = custom_title or None
        self._changed("title", tab_id)
        return True

    def update_tab_path(self, tab_id: str, path: str, title: Optional[str] = None) -> bool:
        tab = self.get(tab_id)
        if tab is None:
            return False
        tab.path = path
        if title is not None:
            tab.title = title
        tab.is_dirty = compute_dirty(tab)
        self._changed("path", tab_id)
        return True

    def update_metadata(self, tab_id: str, created: Optional[str] = None, modified: Optional[str] = None) -> bool:
        tab = self.get(tab_id)
        if tab is None:
            return False
        if tab.created == (created or tab.created) and tab.modified == (modified or tab.modified):
            return False
        tab.created = created or tab.created
        tab.modified = modified or tab.modified
        self._changed("metadata", tab_id)
        return True

    def remember_file_state(self, tab_id: str, file_modified: Optional[str]) -> bool:
        """Record the disk modification time the buffer was last compared with."""
        tab = self.get(tab_id)
        if tab is None or tab.file_modified == file_modified:
            return False
        tab.file_modified = file_modified
        return True

    def update_file_info(
        self,
        tab_id: str,
        encoding: Optional[str] = None,
        size_bytes: Optional[int] = None
    ) -> bool:
        """Record the encoding and on-disk size of a tab's file."""
        tab = self.get(tab_id)
        if tab is None:
            return False
        encoding = encoding.upper() if encoding else tab.encoding
        size_bytes = tab.size_bytes if size_bytes is None else size_bytes
        if tab.encoding == encoding and tab.size_bytes == size_bytes:
            return False
        tab.encoding = encoding
        tab.size_bytes = size_bytes
        # Neither field is stored, so the session stays clean
        self._emit("file_info", tab_id)
        return True

    def update_line_ending(self, tab_id: str, line_ending: str) -> bool:
        tab = self.get(tab_id)
        if tab is None or tab.line_ending == line_ending:
            return False
        tab.line_ending = line_ending
        self._changed("line_ending", tab_id)
        return True

    def set_file_check_status(self, tab_id: str, performed: bool, failed: bool) -> bool:
        tab = self.get(tab_id)
        if tab is None:
            return False
        tab.file_check_performed = performed
        tab.file_check_failed = failed
        self._changed("file_check", tab_id)
        return True

    # File and store synchronisation ---------------------------------

    def mark_as_saved(self, tab_id: str) -> bool:
        """Record that the buffer text now matches its file."""
        tab = self.get(tab_id)
        if tab is None:
            return False
        tab.last_saved_hash = tab.content_hash
        tab.is_dirty = compute_dirty(tab)
        self._changed("saved", tab_id)
        return True

    def save_tab_complete(self, tab_id: str, path: str, title: str, line_ending: str) -> bool:
        """Bind a tab to the file it was just written to."""
        tab = self.get(tab_id)
        if tab is None:
            return False
        tab.path = path
        tab.title = title
        tab.line_ending = line_ending
        tab.file_check_performed = False
        tab.file_check_failed = False
        tab.is_dirty = compute_dirty(tab)
        self._changed("path", tab_id)
        return True

    def reload_tab_content(
        self,
        tab_id: str,
        content: str,
        line_ending: str,
        encoding: str,
        size_bytes: int
    ) -> bool:
        """Replace a buffer with fresh disk content; the tab becomes clean."""
        tab = self.get(tab_id)
        if tab is None:
            return False
        digest = hash_content(content)
        tab.content = content
        tab.content_hash = digest
        tab.last_saved_hash = digest
        tab.is_dirty = compute_dirty(tab)
        tab.line_ending = line_ending
        tab.encoding = encoding
        tab.size_bytes = size_bytes
        tab.file_check_performed = False
        tab.file_check_failed = False
        tab.content_loaded = True
        tab.load_state = LoadState.LOADED
        tab.content_changed = True
        self._changed("reloaded", tab_id)
        return True

    def apply_loaded_content(self, tab_id: str, content: str, last_saved_hash: Optional[str]) -> bool:
        """
        Install content fetched from the store.

        Args:
            tab_id: Tab being populated.
            content: LF-normalized body.
            last_saved_hash: Fingerprint of the file on disk, when known.
        """
        tab = self.get(tab_id)
        if tab is None:
            return False
        tab.content = content
        tab.content_hash = hash_content(content)
        tab.last_saved_hash = last_saved_hash if tab.path else None
        tab.is_dirty = compute_dirty(tab)
        tab.size_bytes = byte_size(content)
        tab.content_loaded = True
        tab.content_changed = False
        self._emit("loaded", tab_id)
        return True

    def mark_tab_persisted(self, tab_id: str, sent_hash: Optional[str]) -> bool:
        """
        Record a successful store write for an open tab.

        ``content_changed`` is cleared only when the body that was sent
        still matches the buffer; later edits stay pending.
        """
        tab = self.get(tab_id)
        if tab is None:
            return False
        return self._mark_persisted(tab, sent_hash)

    def mark_closed_persisted(self, tab_id: str, sent_hash: Optional[str]) -> bool:
        for entry in self.closed:
            if entry.tab.id == tab_id:
                return self._mark_persisted(entry.tab, sent_hash)
        return False

    @staticmethod
    def _mark_persisted(tab: Tab, sent_hash: Optional[str]) -> bool:
        tab.is_persisted = True
        if sent_hash is not None and sent_hash == tab.content_hash:
            tab.content_changed = False
        return True

    def replace_session(
        self,
        tabs: List[Tab],
        closed: List[ClosedTab],
        mru: List[str],
        active_id: Optional[str]
    ) -> None:
        """Discard all state and install a restored session."""
        self.tabs = list(tabs)
        capacity = self.config.session_closed_history_capacity
        # Newest first; anything past the capacity is the oldest history
        self.closed = deque(list(closed)[:capacity], maxlen=capacity)
        open_ids = {t.id for t in self.tabs}
        self.mru = [tab_id for tab_id in dict.fromkeys(mru) if tab_id in open_ids]
        self.active_id = active_id if active_id in open_ids else None
        self.revision += 1
        self._emit("session")

    def reset(self) -> None:
        """Drop every tab and all history."""
        self.replace_session([], [], [], None)
        self.session_dirty = False
