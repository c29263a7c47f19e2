"""Markdown export of a session transcript."""

from __future__ import annotations

import json
from pathlib import Path

from codeagent.errors import SessionIOError
from codeagent.session.models import Conversation, Role, SessionInfo, ToolResult
from codeagent.utils.helpers import sanitize_filename


def default_export_name(info: SessionInfo) -> str:
    return f"{sanitize_filename(info.title)}_{info.id[:8]}.md"


def render_markdown(info: SessionInfo, conversation: Conversation) -> str:
    """Render user and assistant turns, with each tool call matched to its result."""
    results: dict[str, ToolResult] = {}
    for turn in conversation.turns:
        for result in turn.tool_results:
            results[result.tool_call_id] = result

    lines = [
        f"# {info.title}",
        "",
        f"**Session ID**: {info.id}",
        f"**Directory**: {info.directory}",
        f"**Created**: {info.created_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"**Updated**: {info.updated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"**Turns**: {info.turn_count}",
        "",
        "---",
        "",
    ]

    visible = [turn for turn in conversation.turns if turn.role is not Role.TOOL]
    if not visible:
        lines.append("*No messages yet*")
        return "\n".join(lines) + "\n"

    for turn in visible:
        lines.append("## User" if turn.role is Role.USER else "## Assistant")
        lines.append("")
        if turn.text:
            lines.extend([turn.text, ""])
        if turn.tool_calls:
            lines.extend(["### Tool Calls", ""])
            for call in turn.tool_calls:
                lines.append(f"- **{call.name}** (`{call.id}`)")
                formatted = json.dumps(call.arguments, indent=2, ensure_ascii=False)
                lines.append("  - Arguments:")
                lines.append("    ```json")
                lines.extend(f"    {row}" for row in formatted.splitlines())
                lines.append("    ```")
                result = results.get(call.id)
                if result is None:
                    lines.append("  - Result: *No result recorded*")
                else:
                    lines.append(f"  - Result: {result.outcome.human_summary}")
                    lines.append(f"  - Status: {result.outcome.status.value}")
                lines.append("")
        lines.extend(["---", ""])
    return "\n".join(lines) + "\n"


def export_markdown(info: SessionInfo, conversation: Conversation, filename: str | None = None) -> Path:
    """
    Write the transcript to ``filename``.

    Relative names resolve against the session's working directory. Returns
    the path written.
    """
    path = Path(filename or default_export_name(info)).expanduser()
    if not path.is_absolute():
        path = Path(info.directory).expanduser() / path
    try:
        path.write_text(render_markdown(info, conversation), encoding="utf-8")
    except OSError as e:
        raise SessionIOError(f"Failed to export session {info.id}: {e}") from e
    return path
