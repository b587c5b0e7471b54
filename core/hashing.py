"""Content fingerprints for cheap dirty checks."""

import hashlib

DIGEST_SIZE = 16


def hash_content(content: str) -> str:
    """
    Fingerprint buffer text.

    Args:
        content: Buffer text.

    Returns:
        Hex digest, stable across runs.
    """
    return hashlib.blake2b(content.encode("utf-8", errors="surrogatepass"), digest_size=DIGEST_SIZE).hexdigest()


EMPTY_HASH = hash_content("")


def has_content_changed(content: str, saved_hash: str | None) -> bool:
    """Return True if ``content`` no longer matches ``saved_hash``."""
    return hash_content(content) != saved_hash
