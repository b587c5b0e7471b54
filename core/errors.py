"""Error taxonomy and boundary handling."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from core.logging import logger


class Severity(str, Enum):
    """How loudly a handled failure is reported."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class TabKeeperError(Exception):
    """Base class for all session core errors."""


class StoreError(TabKeeperError):
    """The backing store could not be read or written."""


class FileAccessError(TabKeeperError):
    """A file on disk could not be read, written or inspected."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class SessionCorruptError(TabKeeperError):
    """The persisted session could not be parsed."""


class IllegalTransition(TabKeeperError):
    """A load state change that the state machine does not allow."""


class TabNotFound(TabKeeperError):
    """No open tab carries the given identifier."""


@dataclass
class Notice:
    """A non-blocking advisory for the user."""
    level: Severity
    message: str
    tab_ids: List[str] = field(default_factory=list)


NotifyFn = Callable[[Notice], None]


def log_notice(notice: Notice) -> None:
    """Default notice sink: write the advisory to the log."""
    logger.log(_LOG_LEVELS[notice.level], f"[Notice] {notice.message}")


def handle_error(
    context: str,
    err: BaseException,
    severity: Severity = Severity.WARNING,
    **info: Any
) -> None:
    """
    Report a failure caught at a component boundary.

    Never raises; callers continue with a neutral value.

    Args:
        context: Tag naming the failing operation, e.g. ``"Session:Save"``.
        err: The caught exception.
        severity: Level to log at.
        **info: Extra fields appended to the log line.
    """
    extra = ""
    if info:
        extra = " | " + " | ".join(f"{k}={v}" for k, v in info.items())
    logger.log(
        _LOG_LEVELS[Severity(severity)],
        f"[{context}] {type(err).__name__}: {err}{extra}",
        exc_info=severity == Severity.ERROR,
    )


def safe_notify(notify: Optional[NotifyFn], notice: Notice) -> None:
    """Deliver a notice, logging instead of raising if the sink fails."""
    sink = notify or log_notice
    try:
        sink(notice)
    except Exception as e:
        logger.error(f"Notice sink error: {e}")
