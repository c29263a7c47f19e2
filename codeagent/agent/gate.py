"""Tool Gate: tool offers, iteration budget, completion, and loop state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from codeagent.agent.aggregator import AggregatedTurn
from codeagent.agent.tools.finish import FINISH_TOOL_NAME, FinishTool
from codeagent.agent.tools.registry import ToolRegistry
from codeagent.config.schema import AgentDefaults, ToolOfferPolicy
from codeagent.errors import BudgetExceeded, InvalidTransitionError
from codeagent.session.models import Conversation, LoopState, ToolCallRequest

_TRANSITIONS: dict[LoopState, frozenset[LoopState]] = {
    LoopState.DONE: frozenset({LoopState.AWAITING_MODEL}),
    LoopState.FAILED: frozenset({LoopState.AWAITING_MODEL}),
    LoopState.AWAITING_MODEL: frozenset({LoopState.EXECUTING_TOOLS, LoopState.DONE, LoopState.FAILED}),
    LoopState.EXECUTING_TOOLS: frozenset({LoopState.AWAITING_MODEL, LoopState.DONE, LoopState.FAILED}),
}


@dataclass(frozen=True)
class ToolOffer:
    """Tool definitions to send with the next provider call."""

    offer_tools: bool
    definitions: list[dict[str, Any]] = field(default_factory=list)


class Verdict(str, Enum):
    DONE = "done"
    EXECUTE = "execute"
    VIOLATION = "violation"


@dataclass(frozen=True)
class Review:
    """The Gate's decision on one assembled assistant turn."""

    verdict: Verdict
    answer: str = ""
    finish_call: ToolCallRequest | None = None
    error: BudgetExceeded | None = None


class ToolGate:
    """
    Decides what the model may do next and owns ``Conversation.loop_state``.

    Tools are offered while the iteration count is below
    ``max_tool_iterations``, whatever the policy mix. One more call follows
    the last tool round-trip; any tool call in that response other than
    ``finish`` is a violation, so a request never takes more than N+1
    provider calls. Under the explicit-completion policy the ``finish``
    capability is part of every offer, including the final one, and
    calling it ends the request.
    """

    def __init__(self, registry: ToolRegistry, config: AgentDefaults):
        self.registry = registry
        self.max_iterations = config.max_tool_iterations
        self.explicit_completion = config.uses(ToolOfferPolicy.EXPLICIT_COMPLETION)
        self._finish_definition = FinishTool().to_schema()

    def transition(self, conversation: Conversation, target: LoopState) -> None:
        current = conversation.loop_state
        if target not in _TRANSITIONS[current]:
            raise InvalidTransitionError(f"Illegal loop transition {current.value} -> {target.value}")
        logger.debug("gate.transition session={} {} -> {}", conversation.session_id, current.value, target.value)
        conversation.loop_state = target

    def begin(self, conversation: Conversation) -> None:
        """Start a new user request."""
        self.transition(conversation, LoopState.AWAITING_MODEL)
        conversation.iteration_count = 0

    def budget_exhausted(self, conversation: Conversation) -> bool:
        return conversation.iteration_count >= self.max_iterations

    def offer(self, conversation: Conversation) -> ToolOffer:
        if self.budget_exhausted(conversation):
            logger.info(
                "gate.budget_exhausted session={} iterations={}",
                conversation.session_id,
                conversation.iteration_count,
            )
            if self.explicit_completion:
                return ToolOffer(offer_tools=True, definitions=[self._finish_definition])
            return ToolOffer(offer_tools=False)

        exclude = {FINISH_TOOL_NAME}
        definitions = self.registry.get_definitions(exclude=exclude)
        if self.explicit_completion:
            definitions.append(self._finish_definition)
        return ToolOffer(offer_tools=bool(definitions), definitions=definitions)

    def review(self, conversation: Conversation, aggregated: AggregatedTurn) -> Review:
        """Classify an assembled turn. The caller applies the verdict once the turn is persisted."""
        turn = aggregated.turn
        if self.explicit_completion:
            for call in turn.tool_calls:
                if call.name == FINISH_TOOL_NAME:
                    return Review(Verdict.DONE, answer=_finish_answer(call, turn.text), finish_call=call)

        if not turn.has_tool_calls:
            return Review(Verdict.DONE, answer=turn.text or "")

        if self.budget_exhausted(conversation):
            return Review(Verdict.VIOLATION, error=BudgetExceeded(self.max_iterations))

        return Review(Verdict.EXECUTE)

    def execute(self, conversation: Conversation) -> None:
        self.transition(conversation, LoopState.EXECUTING_TOOLS)

    def complete(self, conversation: Conversation) -> None:
        self.transition(conversation, LoopState.DONE)

    def after_tools(self, conversation: Conversation) -> None:
        """Close one tool-executing round-trip."""
        conversation.iteration_count += 1
        self.transition(conversation, LoopState.AWAITING_MODEL)

    def fail(self, conversation: Conversation) -> None:
        if conversation.loop_state is not LoopState.FAILED:
            self.transition(conversation, LoopState.FAILED)


def _finish_answer(call: ToolCallRequest, fallback: str | None) -> str:
    if isinstance(call.arguments, dict):
        answer = call.arguments.get("answer")
        if isinstance(answer, str) and answer:
            return answer
    return fallback or ""
