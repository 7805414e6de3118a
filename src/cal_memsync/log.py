"""Structured logging setup for cal-memsync.

Provides a consistent log format across the application with ISO 8601
timestamps and pipe-separated fields.  User and channel ids are part of
the message text, not the format.
"""

from __future__ import annotations

import logging
import sys

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Marks the handler we installed so repeated calls stay idempotent without
# touching handlers added by uvicorn or pytest.
_HANDLER_ATTR = "_cal_memsync_log_handler"

# Third-party loggers that are noisy at INFO.
_QUIET_LOGGERS = ("googleapiclient.discovery_cache", "httpx")


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger with the project formatter.

    Calling this function multiple times is safe -- it will not add
    duplicate handlers, it only updates the level.

    Args:
        level: A standard logging level name (e.g. ``"DEBUG"``).

    Raises:
        ValueError: If *level* is not a recognised logging level string.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level!r}")

    root = logging.getLogger()
    root.setLevel(numeric_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    for handler in root.handlers:
        if getattr(handler, _HANDLER_ATTR, False):
            handler.setLevel(numeric_level)
            return

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))

    setattr(handler, _HANDLER_ATTR, True)
    root.addHandler(handler)
