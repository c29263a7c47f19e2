"""Session persistence."""

from codeagent.session.models import (
    Conversation,
    LoopState,
    Role,
    SessionInfo,
    ToolCallRequest,
    ToolOutcome,
    ToolResult,
    ToolStatus,
    Turn,
)
from codeagent.session.store import SessionStore

__all__ = [
    "Conversation",
    "LoopState",
    "Role",
    "SessionInfo",
    "SessionStore",
    "ToolCallRequest",
    "ToolOutcome",
    "ToolResult",
    "ToolStatus",
    "Turn",
]
