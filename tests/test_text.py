"""Tests for content fingerprints and text helpers."""

from core.hashing import EMPTY_HASH, has_content_changed, hash_content
from core.utils import (
    CRLF,
    LF,
    apply_line_ending,
    byte_size,
    calculate_text_metrics,
    detect_line_ending,
    normalize_line_endings,
    smart_title,
)


class TestHashing:

    def test_hash_is_stable(self):
        assert hash_content("hello") == hash_content("hello")
        assert len(hash_content("hello")) == 32

    def test_hash_distinguishes_content(self):
        assert hash_content("hello") != hash_content("hello ")
        assert EMPTY_HASH == hash_content("")

    def test_has_content_changed(self):
        saved = hash_content("abc")
        assert not has_content_changed("abc", saved)
        assert has_content_changed("abd", saved)
        assert has_content_changed("abc", None)

    def test_lone_surrogate_does_not_raise(self):
        assert hash_content("\ud800") != EMPTY_HASH


class TestLineEndings:

    def test_detect(self):
        assert detect_line_ending("a\r\nb\r\n") == CRLF
        assert detect_line_ending("a\nb\n") == LF
        assert detect_line_ending("") == LF
        assert detect_line_ending("a\r\nb\nc\n") == LF

    def test_normalize_and_apply(self):
        assert normalize_line_endings("a\r\nb\r\n") == "a\nb\n"
        assert apply_line_ending("a\nb", CRLF) == "a\r\nb"
        assert apply_line_ending("a\nb", LF) == "a\nb"


def test_text_metrics():
    metrics = calculate_text_metrics("hello world\nfoo")
    assert metrics.line_count == 2
    assert metrics.word_count == 3
    assert metrics.char_count == 15

    empty = calculate_text_metrics("")
    assert empty.line_count == 1
    assert empty.word_count == 0


def test_byte_size_counts_utf8():
    assert byte_size("abc") == 3
    assert byte_size("é") == 2


class TestSmartTitle:

    def test_uses_first_non_blank_line(self):
        assert smart_title("\n\n  shopping list\nmilk", "New-1") == "shopping list"

    def test_strips_heading_markers(self):
        assert smart_title("## Notes\nbody", "New-1") == "Notes"

    def test_blank_content_keeps_fallback(self):
        assert smart_title("   \n", "New-3") == "New-3"

    def test_truncates_long_lines(self):
        assert smart_title("a" * 30, "New-1") == "a" * 25 + "..."
        assert smart_title("abcdef", "New-1", max_len=3) == "abc..."
