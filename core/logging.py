"""Package-wide logger."""

import logging
import sys

LOGGER_NAME = "tabkeeper"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

logger = logging.getLogger(LOGGER_NAME)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Attach a single stream handler to the package logger.

    Args:
        level: Level name such as ``"INFO"`` or ``"DEBUG"``.

    Returns:
        The configured logger.
    """
    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if not any(getattr(h, "_tabkeeper", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._tabkeeper = True
        root.addHandler(handler)

    return root
