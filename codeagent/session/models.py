"""Conversation data model shared by the loop, providers and the session store."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class LoopState(str, Enum):
    """Controller state for the request in flight. A conversation at rest is DONE."""

    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"


class ToolCallRequest(BaseModel):
    """Tool call emitted by the model. ``id`` is provider-assigned and correlates the result."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Any = Field(default_factory=dict)


class ToolOutcome(BaseModel):
    """
    Result of one tool invocation.

    ``structured_output`` re-enters the conversation as model-visible context,
    ``human_summary`` is what a user interface shows. Failure outcomes always
    carry an ``error`` key so the two never disagree on status.
    """

    model_config = ConfigDict(frozen=True)

    status: ToolStatus
    structured_output: Any = None
    human_summary: str = ""
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is ToolStatus.SUCCESS

    @classmethod
    def success(cls, output: Any, summary: str, detail: str | None = None) -> ToolOutcome:
        return cls(status=ToolStatus.SUCCESS, structured_output=output, human_summary=summary, detail=detail)

    @classmethod
    def failure(
        cls,
        message: str,
        *,
        output: dict[str, Any] | None = None,
        detail: str | None = None,
    ) -> ToolOutcome:
        structured = {"error": message}
        if output:
            structured.update(output)
        return cls(status=ToolStatus.ERROR, structured_output=structured, human_summary=message, detail=detail)

    @classmethod
    def from_error(cls, error: Exception) -> ToolOutcome:
        return cls.failure(str(error), detail=type(error).__name__)


class ToolResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool_call_id: str
    name: str
    outcome: ToolOutcome


class Turn(BaseModel):
    """One immutable contribution to a conversation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Role
    text: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_results: tuple[ToolResult, ...] = ()
    synthetic: bool = False
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    @classmethod
    def user(cls, text: str) -> Turn:
        return cls(role=Role.USER, text=text)

    @classmethod
    def assistant(
        cls,
        text: str | None,
        tool_calls: Sequence[ToolCallRequest] = (),
        *,
        synthetic: bool = False,
    ) -> Turn:
        return cls(role=Role.ASSISTANT, text=text, tool_calls=tuple(tool_calls), synthetic=synthetic)

    @classmethod
    def tool(cls, call: ToolCallRequest, outcome: ToolOutcome, *, synthetic: bool = False) -> Turn:
        result = ToolResult(tool_call_id=call.id, name=call.name, outcome=outcome)
        return cls(role=Role.TOOL, tool_results=(result,), synthetic=synthetic)


class SessionInfo(BaseModel):
    """Session metadata. ``updated_at`` and ``turn_count`` are derived from the turn log."""

    id: str
    title: str = "New Coding Session"
    directory: str = "."
    system_prompt: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    turn_count: int = 0


@dataclass
class Conversation:
    """
    Ordered, append-only turn sequence for one session.

    ``loop_state`` and ``iteration_count`` belong to the request in flight and
    are only ever assigned by the ToolGate. ``unresolved_calls`` lists tool
    calls that had no result when the conversation was loaded.
    """

    session_id: str
    turns: list[Turn] = field(default_factory=list)
    iteration_count: int = 0
    loop_state: LoopState = LoopState.DONE
    unresolved_calls: list[ToolCallRequest] = field(default_factory=list)

    def append(self, turn: Turn) -> None:
        self.turns.append(turn)

    @property
    def history(self) -> tuple[Turn, ...]:
        return tuple(self.turns)

    @property
    def resumable(self) -> bool:
        return not self.unresolved_calls

    @property
    def last_assistant_text(self) -> str:
        for turn in reversed(self.turns):
            if turn.role is Role.ASSISTANT and turn.text:
                return turn.text
        return ""


def find_unresolved_calls(turns: Sequence[Turn]) -> list[ToolCallRequest]:
    """Return tool calls with no result in the tool turns that follow them, in order."""
    unresolved: list[ToolCallRequest] = []
    pending: dict[str, ToolCallRequest] = {}
    for turn in turns:
        if turn.role is Role.TOOL:
            for result in turn.tool_results:
                pending.pop(result.tool_call_id, None)
            continue
        unresolved.extend(pending.values())
        pending = {call.id: call for call in turn.tool_calls}
    unresolved.extend(pending.values())
    return unresolved
