"""File editing tool: create, replace, and read files within the workspace."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from loguru import logger

from codeagent.agent.tools.base import Tool
from codeagent.errors import ToolExecutionError
from codeagent.session.models import ToolOutcome

# Files that should never be read or written
_SENSITIVE_PATTERNS = {
    ".env",
    ".env.local",
    ".env.production",
    "id_rsa",
    "id_ed25519",
    ".pem",
    ".key",
    "credentials",
}

MAX_READ_LENGTH = 20000

_OPERATIONS = ["create_file", "replace_by_string", "replace_by_lines", "read_file"]


class EditFileTool(Tool):
    """Create new files or edit existing ones."""

    def __init__(self, workspace: Path, restrict_to_workspace: bool = True) -> None:
        self._workspace = workspace.expanduser().resolve()
        self._restrict = restrict_to_workspace

    @property
    def name(self) -> str:
        return "edit_file"

    @property
    def description(self) -> str:
        return (
            "Create new files or edit existing files with various operations. REQUIRED: Set 'operation' to one of: "
            "'create_file' (new file), 'replace_by_string' (find/replace unique text), "
            "'replace_by_lines' (replace line range), or 'read_file' (view contents)."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "operation": {
                    "type": "string",
                    "enum": _OPERATIONS,
                    "description": "Operation to perform on the file",
                },
                "file_path": {"type": "string", "description": "Path to the file"},
                "content": {
                    "type": "string",
                    "description": "Content for create_file or new content for replacements",
                },
                "old_string": {"type": "string", "description": "String to replace (for replace_by_string)"},
                "start_line": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Starting line number (1-based, for replace_by_lines and read_file)",
                },
                "end_line": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Ending line number (1-based, inclusive)",
                },
            },
            "required": ["operation", "file_path"],
        }

    async def execute(
        self,
        *,
        operation: str,
        file_path: str,
        content: str | None = None,
        old_string: str | None = None,
        start_line: int | None = None,
        end_line: int | None = None,
        **kwargs: Any,
    ) -> ToolOutcome:
        path = self._resolve_path(file_path)
        if operation == "create_file":
            return self._create(path, file_path, self._require(content, "content"))
        if operation == "replace_by_string":
            return self._replace_string(
                path, file_path, self._require(old_string, "old_string"), self._require(content, "content")
            )
        if operation == "replace_by_lines":
            return self._replace_lines(
                path,
                file_path,
                self._require(start_line, "start_line"),
                self._require(end_line, "end_line"),
                self._require(content, "content"),
            )
        return self._read(path, file_path, start_line, end_line)

    def _require(self, value: Any, field: str) -> Any:
        if value is None:
            raise ToolExecutionError(self.name, f"Missing {field}")
        return value

    def _resolve_path(self, file_path: str) -> Path:
        """Resolve path and validate it is within workspace and not sensitive."""
        p = Path(file_path).expanduser()
        if not p.is_absolute():
            p = self._workspace / p
        p = p.resolve()

        if self._restrict and p != self._workspace and self._workspace not in p.parents:
            raise ToolExecutionError(self.name, f"path is outside workspace: {file_path}")
        for pattern in _SENSITIVE_PATTERNS:
            if p.name == pattern or p.name.endswith(pattern):
                raise ToolExecutionError(self.name, f"access denied to sensitive file: {p.name}")
        return p

    def _read_text(self, path: Path, file_path: str) -> str:
        if not path.is_file():
            raise ToolExecutionError(self.name, f"file not found: {file_path}")
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ToolExecutionError(self.name, f"cannot read binary file: {file_path}") from e

    def _create(self, path: Path, file_path: str, content: str) -> ToolOutcome:
        if path.exists():
            return ToolOutcome.failure(f"File already exists: {file_path}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        line_count = len(content.splitlines())
        logger.debug("edit_file.create path={} lines={}", path, line_count)
        return ToolOutcome.success(
            {"file_path": file_path, "lines": line_count},
            f"Created file {file_path} with {line_count} lines",
        )

    def _replace_string(self, path: Path, file_path: str, old_string: str, new_string: str) -> ToolOutcome:
        text = self._read_text(path, file_path)
        occurrences = text.count(old_string) if old_string else 0
        if occurrences == 0:
            return ToolOutcome.failure("String not found in file", output={"file_path": file_path})
        if occurrences > 1:
            return ToolOutcome.failure(
                f"String appears {occurrences} times, must be unique",
                output={"file_path": file_path},
            )
        path.write_text(text.replace(old_string, new_string), encoding="utf-8")
        return ToolOutcome.success({"file_path": file_path, "modified": True}, f"Replaced string in {file_path}")

    def _replace_lines(
        self,
        path: Path,
        file_path: str,
        start_line: int,
        end_line: int,
        new_content: str,
    ) -> ToolOutcome:
        lines = self._read_text(path, file_path).splitlines()
        if start_line < 1 or start_line > len(lines):
            return ToolOutcome.failure(f"Invalid start_line: {start_line}")
        if end_line < start_line or end_line > len(lines):
            return ToolOutcome.failure(f"Invalid end_line: {end_line}")

        replacement = new_content.splitlines()
        updated = lines[: start_line - 1] + replacement + lines[end_line:]
        path.write_text("\n".join(updated) + "\n", encoding="utf-8")
        old_count = end_line - start_line + 1
        return ToolOutcome.success(
            {
                "file_path": file_path,
                "modified": True,
                "lines_replaced": old_count,
                "new_lines": len(replacement),
            },
            f"Replaced lines {start_line}-{end_line} in {file_path}",
            detail=f"{file_path} ({old_count} -> {len(replacement)} lines)",
        )

    def _read(self, path: Path, file_path: str, start_line: int | None, end_line: int | None) -> ToolOutcome:
        lines = self._read_text(path, file_path).splitlines()
        start = start_line or 1
        end = min(end_line or len(lines), len(lines))
        if lines and start > len(lines):
            return ToolOutcome.failure(f"Invalid start_line: {start}")

        selected = lines[start - 1 : end]
        numbered = "\n".join(f"{number:>6}\t{line}" for number, line in enumerate(selected, start=start))
        if len(numbered) > MAX_READ_LENGTH:
            numbered = numbered[:MAX_READ_LENGTH] + f"\n\n... (truncated, total {len(numbered)} characters)"
        return ToolOutcome.success(
            {"file_path": file_path, "content": numbered, "total_lines": len(lines)},
            f"Read {len(selected)} lines from {file_path}",
        )
