"""Utility functions module."""

from codeagent.utils.helpers import preview, sanitize_filename, sanitize_session_key, truncate_output

__all__ = ["truncate_output", "sanitize_session_key", "sanitize_filename", "preview"]
