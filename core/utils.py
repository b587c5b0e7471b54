"""Utility functions."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone

LF = "LF"
CRLF = "CRLF"

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_HEADING_RE = re.compile(r"^#+\s*")


@dataclass
class TextMetrics:
    """Line, word and character counts of a buffer."""
    line_count: int
    word_count: int
    char_count: int


def normalize_line_endings(text: str) -> str:
    """Convert CRLF line breaks to LF."""
    return text.replace("\r\n", "\n")


def detect_line_ending(raw: str) -> str:
    """
    Detect the dominant line ending of raw file text.

    Args:
        raw: Text as read from disk, before normalization.

    Returns:
        ``"CRLF"`` or ``"LF"``.
    """
    crlf = raw.count("\r\n")
    lf_only = raw.count("\n") - crlf
    if crlf > 0 and (crlf >= lf_only or lf_only == 0):
        return CRLF
    return LF


def apply_line_ending(text: str, line_ending: str) -> str:
    """Convert LF-normalized text back to the given line ending."""
    if line_ending == CRLF:
        return normalize_line_endings(text).replace("\n", "\r\n")
    return text


def byte_size(text: str) -> int:
    """UTF-8 encoded length of ``text``."""
    return len(text.encode("utf-8", errors="surrogatepass"))


def count_words(text: str) -> int:
    """Count word-like runs in ``text``."""
    if not text.strip():
        return 0
    return len(_WORD_RE.findall(text))


def calculate_text_metrics(content: str) -> TextMetrics:
    """
    Calculate basic text metrics.

    Args:
        content: LF-normalized buffer text.

    Returns:
        Metrics for the buffer.
    """
    return TextMetrics(
        line_count=content.count("\n") + 1,
        word_count=count_words(content),
        char_count=len(content),
    )


def smart_title(content: str, fallback: str, max_len: int = 25) -> str:
    """
    Derive a tab title from the first non-blank line of ``content``.

    Leading markdown heading markers are stripped. Titles longer than
    ``max_len`` are cut and suffixed with ``...``.
    """
    if not content.strip():
        return fallback

    first_line = next((line for line in content.split("\n") if line.strip()), "")
    title = _HEADING_RE.sub("", first_line).strip()
    if len(title) > max_len:
        title = title[:max_len].strip() + "..."
    return title or fallback


def utc_timestamp() -> str:
    """Current time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()
