"""Reduce a stream of output increments into one assistant turn."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from codeagent.errors import MalformedToolArguments, ProviderError
from codeagent.providers.base import EndOfTurn, OutputIncrement, TextFragment, ToolCallFragment
from codeagent.session.models import ToolCallRequest, ToolOutcome, Turn


@dataclass
class AggregatedTurn:
    """
    A fully assembled model response.

    ``rejected`` maps call ids whose arguments could not be assembled to
    the error outcome that stands in for their result.
    """

    turn: Turn
    rejected: dict[str, ToolOutcome] = field(default_factory=dict)
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def tool_calls(self) -> tuple[ToolCallRequest, ...]:
        return self.turn.tool_calls


@dataclass
class _PendingCall:
    id: str
    name: str | None = None
    parts: list[str] = field(default_factory=list)


class TurnAggregator:
    """
    Stateful reducer for one provider response.

    Feed increments with ``feed`` until it returns True (EndOfTurn seen),
    then call ``build``. ``consume`` does both over an async stream.
    """

    def __init__(self, on_text: Callable[[str], None] | None = None):
        self._on_text = on_text
        self._text: list[str] = []
        self._calls: dict[str, _PendingCall] = {}
        self._end: EndOfTurn | None = None

    def feed(self, increment: OutputIncrement) -> bool:
        if self._end is not None:
            raise ProviderError("Increment received after end of turn")

        if isinstance(increment, TextFragment):
            if increment.text:
                self._text.append(increment.text)
                if self._on_text is not None:
                    self._on_text(increment.text)
        elif isinstance(increment, ToolCallFragment):
            pending = self._calls.get(increment.id)
            if pending is None:
                pending = self._calls[increment.id] = _PendingCall(id=increment.id)
            if increment.name and not pending.name:
                pending.name = increment.name
            if increment.arguments:
                pending.parts.append(increment.arguments)
        elif isinstance(increment, EndOfTurn):
            self._end = increment
            return True
        else:
            raise ProviderError(f"Unknown increment type: {type(increment).__name__}")
        return False

    def build(self) -> AggregatedTurn:
        if self._end is None:
            raise ProviderError("Stream ended without an end-of-turn marker", retryable=True)

        calls: list[ToolCallRequest] = []
        rejected: dict[str, ToolOutcome] = {}
        for pending in self._calls.values():
            raw = "".join(pending.parts)
            name = pending.name or ""
            try:
                arguments: Any = _parse_arguments(pending, raw)
            except MalformedToolArguments as e:
                logger.warning("aggregator.malformed_arguments id={} name={} reason={}", pending.id, name, e.reason)
                rejected[pending.id] = ToolOutcome.from_error(e)
                arguments = raw
            calls.append(ToolCallRequest(id=pending.id, name=name, arguments=arguments))

        text = "".join(self._text) or None
        return AggregatedTurn(
            turn=Turn.assistant(text, calls),
            rejected=rejected,
            finish_reason=self._end.finish_reason,
            usage=dict(self._end.usage),
        )

    async def consume(self, stream: AsyncIterator[OutputIncrement]) -> AggregatedTurn:
        """Drain ``stream`` up to its first EndOfTurn and build the turn."""
        async with aclosing(stream) as increments:
            async for increment in increments:
                if self.feed(increment):
                    break
        return self.build()


def _parse_arguments(pending: _PendingCall, raw: str) -> dict[str, Any]:
    name = pending.name or "<unnamed>"
    if not pending.name:
        raise MalformedToolArguments(name, pending.id, "tool call has no name")
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw, parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise MalformedToolArguments(name, pending.id, f"invalid JSON: {e.msg}") from e
    except ValueError as e:
        raise MalformedToolArguments(name, pending.id, f"invalid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise MalformedToolArguments(name, pending.id, f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


def _reject_constant(token: str) -> None:
    raise ValueError(f"non-finite number {token}")

