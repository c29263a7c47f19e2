"""Shell command execution tool."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any

from codeagent.agent.tools.base import Tool
from codeagent.session.models import ToolOutcome
from codeagent.utils.helpers import truncate_output

# Refused outright. This is a guard against obvious accidents, not a sandbox.
_BLOCKED_PATTERNS = [
    r"\brm\s+-rf\s+/(\s|$)",
    r"\brm\s+-fr\s+/(\s|$)",
    r"\bmkfs\b",
    r"\bdd\b\s+if=",
    r"\b(shutdown|reboot|poweroff)\b",
    r">\s*/dev/sd",
    r":\(\)\s*\{.*\};\s*:",
]

MAX_OUTPUT_LENGTH = 10000
DEFAULT_TIMEOUT = 30
MAX_TIMEOUT = 600


class BashTool(Tool):
    """Run a shell command in the working directory."""

    def __init__(self, workspace: Path, timeout_s: int = DEFAULT_TIMEOUT) -> None:
        self._workspace = workspace.expanduser().resolve()
        self._timeout_s = timeout_s

    @property
    def name(self) -> str:
        return "bash"

    @property
    def description(self) -> str:
        return (
            "Execute shell commands in the system. Provide the full command string in the 'command' "
            "parameter. Optionally specify 'cwd' to set the working directory."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to execute"},
                "cwd": {
                    "type": "string",
                    "description": "Working directory for the command (optional, relative to the workspace)",
                },
                "timeout": {
                    "type": "integer",
                    "description": f"Timeout in seconds (default {DEFAULT_TIMEOUT}, max {MAX_TIMEOUT})",
                    "minimum": 1,
                },
                "description": {
                    "type": "string",
                    "description": "Human-readable description of what the command does (optional)",
                },
            },
            "required": ["command"],
        }

    async def execute(
        self,
        *,
        command: str,
        cwd: str | None = None,
        timeout: int | None = None,
        **kwargs: Any,
    ) -> ToolOutcome:
        if not command.strip():
            return ToolOutcome.failure("Empty command")
        for pattern in _BLOCKED_PATTERNS:
            if re.search(pattern, command, re.IGNORECASE):
                return ToolOutcome.failure(f"Command blocked by safety guard (matched: {pattern})")

        workdir = self._workspace
        if cwd:
            workdir = Path(cwd).expanduser()
            if not workdir.is_absolute():
                workdir = self._workspace / workdir
        if not workdir.is_dir():
            return ToolOutcome.failure(f"Working directory not found: {workdir}")

        limit = min(max(timeout or self._timeout_s, 1), MAX_TIMEOUT)
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=str(workdir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return ToolOutcome.failure(f"Command timed out after {limit}s", output={"command": command})

        stdout_text = truncate_output(stdout.decode("utf-8", errors="replace"), MAX_OUTPUT_LENGTH)
        stderr_text = truncate_output(stderr.decode("utf-8", errors="replace"), MAX_OUTPUT_LENGTH)
        exit_code = proc.returncode if proc.returncode is not None else -1
        output = {"stdout": stdout_text, "stderr": stderr_text, "exit_code": exit_code}
        display = stdout_text or stderr_text

        if exit_code != 0:
            return ToolOutcome.failure(
                f"Command failed with exit code: {exit_code}",
                output=output,
                detail=display or None,
            )
        summary = "Command executed successfully" if display else "Command executed successfully (no output)"
        return ToolOutcome.success(output, summary, detail=display or None)
