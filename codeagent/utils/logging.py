"""Process-level logging setup."""

from __future__ import annotations

import os
import sys

from loguru import logger

_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {message}"
_configured_level: str | None = None


def configure_logging(level: str | None = None) -> None:
    """Route loguru output to stderr once. ``CODEAGENT_LOG_LEVEL`` overrides ``level``."""
    global _configured_level

    resolved = (os.getenv("CODEAGENT_LOG_LEVEL") or level or "WARNING").upper()
    if resolved == _configured_level:
        return
    logger.remove()
    logger.add(sys.stderr, level=resolved, format=_FORMAT, backtrace=False, diagnose=False)
    _configured_level = resolved
