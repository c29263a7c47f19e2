"""Streaming provider contract and the increments it yields."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from codeagent.session.models import Role, Turn


@dataclass(frozen=True)
class TextFragment:
    """A piece of assistant text."""

    text: str


@dataclass(frozen=True)
class ToolCallFragment:
    """
    A piece of one tool call.

    ``name`` is normally present only on the first fragment for an id.
    ``arguments`` is a slice of the JSON payload; slices are concatenated
    in arrival order.
    """

    id: str
    name: str | None = None
    arguments: str = ""


@dataclass(frozen=True)
class EndOfTurn:
    """Terminal increment of a response."""

    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)


OutputIncrement = Union[TextFragment, ToolCallFragment, EndOfTurn]


class StreamingProvider(ABC):
    """
    Base class for streaming model endpoints.

    ``stream`` yields a finite ordered sequence of increments that ends
    with exactly one EndOfTurn, or raises ProviderError. Providers never
    decide whether the conversation is over.
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    def stream(
        self,
        history: Sequence[Turn],
        tools: list[dict[str, Any]] | None = None,
        *,
        system_prompt: str | None = None,
    ) -> AsyncIterator[OutputIncrement]:
        """Stream one model response for ``history``."""
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        pass


def _encode_arguments(arguments: Any) -> str:
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments, ensure_ascii=False)


def to_openai_messages(history: Sequence[Turn], system_prompt: str | None = None) -> list[dict[str, Any]]:
    """Flatten Turn history into OpenAI chat-completions messages."""
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    for turn in history:
        if turn.role is Role.USER:
            messages.append({"role": "user", "content": turn.text or ""})
        elif turn.role is Role.ASSISTANT:
            msg: dict[str, Any] = {"role": "assistant", "content": turn.text}
            if turn.tool_calls:
                msg["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": _encode_arguments(call.arguments)},
                    }
                    for call in turn.tool_calls
                ]
            elif not turn.text:
                msg["content"] = ""
            messages.append(msg)
        else:
            for result in turn.tool_results:
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": result.tool_call_id,
                        "name": result.name,
                        "content": json.dumps(result.outcome.structured_output, ensure_ascii=False, default=str),
                    }
                )
    return messages


RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})


def is_retryable_status(status_code: int | None) -> bool:
    """Rate limits, timeouts, conflicts and server errors are worth retrying."""
    if status_code is None:
        return False
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500
