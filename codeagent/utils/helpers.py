"""Common utility functions."""

from __future__ import annotations

import json
import re
from typing import Any


def truncate_output(text: str, max_length: int = 4000) -> str:
    """
    Shorten tool output that would otherwise flood the conversation.

    Keeps the first and last ``max_length // 2`` characters with a marker
    in between reporting how many were dropped.
    """
    overflow = len(text) - max_length
    if overflow <= 0:
        return text
    keep = max_length // 2
    head, tail = text[:keep], text[len(text) - keep :]
    return f"{head}\n\n... [truncated {overflow} chars] ...\n\n{tail}"


_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_session_key(key: str) -> str:
    """Map a session id to a filename stem; unsafe characters become underscores."""
    return _UNSAFE_KEY_CHARS.sub("_", key)


def sanitize_filename(name: str) -> str:
    """Replace anything but alphanumerics, dash and underscore with a dash."""
    return "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in name)


def preview(value: Any, limit: int = 30) -> str:
    """Serialize a value for compact log lines."""
    if isinstance(value, str):
        text = value
    else:
        try:
            text = json.dumps(value, ensure_ascii=False)
        except TypeError:
            text = repr(value)
    return text if len(text) <= limit else text[: max(limit - 3, 0)] + "..."
