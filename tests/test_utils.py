"""Tests for helper utilities and logging setup."""

from unittest.mock import MagicMock

from codeagent.utils import preview, sanitize_filename, sanitize_session_key, truncate_output
from codeagent.utils import logging as log_setup


def test_truncate_output_keeps_head_and_tail():
    text = "a" * 50 + "b" * 50

    result = truncate_output(text, max_length=20)

    assert result.startswith("a" * 10)
    assert result.endswith("b" * 10)
    assert "truncated 80 chars" in result
    assert truncate_output("short", max_length=20) == "short"


def test_sanitizers():
    assert sanitize_session_key("cli:default/x") == "cli_default_x"
    assert sanitize_filename("Fix bug #1") == "Fix-bug--1"


def test_preview():
    assert preview("abc") == "abc"
    assert preview({"k": [1, 2]}) == '{"k": [1, 2]}'
    assert preview("x" * 40, limit=10) == "xxxxxxx..."


def test_configure_logging_env_override(monkeypatch):
    monkeypatch.setenv("CODEAGENT_LOG_LEVEL", "debug")
    monkeypatch.setattr(log_setup, "_configured_level", None)

    fake_logger = MagicMock()
    monkeypatch.setattr(log_setup, "logger", fake_logger)

    log_setup.configure_logging("ERROR")
    log_setup.configure_logging("ERROR")

    fake_logger.remove.assert_called_once()
    assert fake_logger.add.call_args.kwargs["level"] == "DEBUG"
