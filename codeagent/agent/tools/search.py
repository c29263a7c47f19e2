"""File search tool: glob by name, grep by content."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from codeagent.agent.tools.base import Tool
from codeagent.errors import ToolExecutionError
from codeagent.session.models import ToolOutcome

# Directories never descended into by grep
_SKIP_DIRS = {".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv", "target", ".mypy_cache"}

DEFAULT_MAX_RESULTS = 200
DISPLAY_LIMIT = 20
MAX_FILE_BYTES = 2_000_000


class FileSearchTool(Tool):
    """Find files by glob pattern or search their contents with a regex."""

    def __init__(self, workspace: Path) -> None:
        self._workspace = workspace.expanduser().resolve()

    @property
    def name(self) -> str:
        return "file_search"

    @property
    def description(self) -> str:
        return (
            "Search for files using glob patterns or grep for content in files. REQUIRED: Set 'operation' "
            "to 'glob' for filename pattern matching (e.g., '**/*.py'), or 'grep' for content search "
            "using regex patterns."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "operation": {
                    "type": "string",
                    "enum": ["glob", "grep"],
                    "description": "Operation to perform: glob for filename patterns, grep for content search",
                },
                "pattern": {"type": "string", "description": "Pattern to search for (glob pattern or regex)"},
                "path": {"type": "string", "description": "Directory to search in (default: workspace root)"},
                "file_type": {
                    "type": "string",
                    "description": "File extension filter for grep (e.g., 'py', 'rs', 'js')",
                },
                "case_sensitive": {"type": "boolean", "description": "Case sensitive search (default: true)"},
                "max_results": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Maximum number of results to return",
                },
            },
            "required": ["operation", "pattern"],
        }

    async def execute(
        self,
        *,
        operation: str,
        pattern: str,
        path: str = ".",
        file_type: str | None = None,
        case_sensitive: bool = True,
        max_results: int | None = None,
        **kwargs: Any,
    ) -> ToolOutcome:
        root = Path(path).expanduser()
        if not root.is_absolute():
            root = self._workspace / root
        if not root.is_dir():
            raise ToolExecutionError(self.name, f"directory not found: {path}")

        limit = max_results or DEFAULT_MAX_RESULTS
        if operation == "glob":
            return self._glob(root, pattern, limit)
        return self._grep(root, pattern, file_type, case_sensitive, limit)

    def _relative(self, p: Path) -> str:
        try:
            return str(p.relative_to(self._workspace))
        except ValueError:
            return str(p)

    def _glob(self, root: Path, pattern: str, limit: int) -> ToolOutcome:
        try:
            matches = sorted(p for p in root.glob(pattern) if p.is_file())
        except (ValueError, NotImplementedError) as e:
            raise ToolExecutionError(self.name, f"invalid glob pattern: {e}") from e

        files = [self._relative(p) for p in matches[:limit]]
        summary = f"Found {len(files)} file(s)" if files else "No files found matching the pattern"
        return ToolOutcome.success(
            {"files": files, "truncated": len(matches) > limit},
            summary,
            detail="\n".join(files[:DISPLAY_LIMIT]) or None,
        )

    def _grep(
        self,
        root: Path,
        pattern: str,
        file_type: str | None,
        case_sensitive: bool,
        limit: int,
    ) -> ToolOutcome:
        try:
            regex = re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
        except re.error as e:
            raise ToolExecutionError(self.name, f"invalid regex: {e}") from e

        suffix = f".{file_type.lstrip('.')}" if file_type else None
        matches: list[dict[str, Any]] = []
        files: set[str] = set()
        for candidate in self._walk(root):
            if suffix and candidate.suffix != suffix:
                continue
            try:
                if candidate.stat().st_size > MAX_FILE_BYTES:
                    continue
                text = candidate.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            for number, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    rel = self._relative(candidate)
                    files.add(rel)
                    matches.append({"file": rel, "line": number, "text": line.strip()})
                    if len(matches) >= limit:
                        break
            if len(matches) >= limit:
                break

        if not matches:
            return ToolOutcome.success({"matches": []}, "No matches found")
        display = "\n".join(f"{m['file']}:{m['line']}: {m['text']}" for m in matches[:DISPLAY_LIMIT])
        return ToolOutcome.success(
            {"matches": matches},
            f"Found {len(matches)} match(es) in {len(files)} file(s)",
            detail=display,
        )

    def _walk(self, root: Path):
        for entry in sorted(root.iterdir()):
            if entry.is_dir():
                if entry.name in _SKIP_DIRS:
                    continue
                yield from self._walk(entry)
            elif entry.is_file():
                yield entry
