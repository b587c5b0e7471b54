"""Wire records exchanged with the backing store and the filesystem."""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional


@dataclass
class TabRecord:
    """Persisted projection of one tab.

    ``content`` is None when the store should keep its prior body.
    """
    id: str
    title: str
    content: Optional[str]
    is_dirty: bool
    path: Optional[str]
    scroll_percentage: float = 0.0
    created: Optional[str] = None
    modified: Optional[str] = None
    is_pinned: bool = False
    custom_title: Optional[str] = None
    file_check_failed: bool = False
    file_check_performed: bool = False
    mru_position: Optional[int] = None
    sort_index: Optional[int] = None
    original_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TabRecord":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SessionData:
    """Active and closed tab records as stored."""
    active_tabs: List[TabRecord] = field(default_factory=list)
    closed_tabs: List[TabRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_tabs": [t.to_dict() for t in self.active_tabs],
            "closed_tabs": [t.to_dict() for t in self.closed_tabs],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionData":
        return cls(
            active_tabs=[TabRecord.from_dict(t) for t in data.get("active_tabs") or []],
            closed_tabs=[TabRecord.from_dict(t) for t in data.get("closed_tabs") or []],
        )


@dataclass
class FileContent:
    """Raw text of a file and the encoding it was decoded with."""
    content: str
    encoding: str


@dataclass
class FileMetadata:
    """Timestamps and size of a file on disk."""
    created: Optional[str]
    modified: Optional[str]
    size: int
