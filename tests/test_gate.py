"""Tests for the Tool Gate."""

import pytest

from codeagent.agent.aggregator import AggregatedTurn
from codeagent.agent.gate import ToolGate, Verdict
from codeagent.agent.tools import FINISH_TOOL_NAME, ToolRegistry
from codeagent.agent.tools.shell import BashTool
from codeagent.config.schema import AgentDefaults
from codeagent.errors import BudgetExceeded, InvalidTransitionError
from codeagent.session.models import Conversation, LoopState, ToolCallRequest, Turn


@pytest.fixture
def registry(tmp_path):
    registry = ToolRegistry()
    registry.register(BashTool(tmp_path))
    return registry


def _gate(registry, **overrides) -> ToolGate:
    return ToolGate(registry, AgentDefaults(**overrides))


def _aggregated(text=None, *calls: ToolCallRequest) -> AggregatedTurn:
    return AggregatedTurn(turn=Turn.assistant(text, calls))


def _offered_names(offer) -> list[str]:
    return [d["function"]["name"] for d in offer.definitions]


def test_begin_resets_iteration_count(registry):
    gate = _gate(registry)
    conversation = Conversation("s", iteration_count=5)

    gate.begin(conversation)

    assert conversation.loop_state is LoopState.AWAITING_MODEL
    assert conversation.iteration_count == 0


def test_budgeted_offer_until_exhausted(registry):
    gate = _gate(registry, max_tool_iterations=2)
    conversation = Conversation("s")
    gate.begin(conversation)

    assert _offered_names(gate.offer(conversation)) == ["bash"]
    conversation.iteration_count = 2
    offer = gate.offer(conversation)
    assert not offer.offer_tools
    assert offer.definitions == []


def test_explicit_completion_adds_finish_to_offer(registry):
    gate = _gate(registry, tool_offer_policy=["explicit-completion"], max_tool_iterations=1)
    conversation = Conversation("s")
    gate.begin(conversation)

    assert _offered_names(gate.offer(conversation)) == ["bash", FINISH_TOOL_NAME]


@pytest.mark.parametrize("policy", [["explicit-completion"], ["budgeted", "explicit-completion"]])
def test_budget_caps_explicit_completion(registry, policy):
    gate = _gate(registry, tool_offer_policy=policy, max_tool_iterations=2)
    conversation = Conversation("s")
    gate.begin(conversation)
    conversation.iteration_count = 2

    offer = gate.offer(conversation)
    assert offer.offer_tools
    assert _offered_names(offer) == [FINISH_TOOL_NAME]

    review = gate.review(conversation, _aggregated(None, ToolCallRequest(id="1", name="bash")))
    assert review.verdict is Verdict.VIOLATION
    assert isinstance(review.error, BudgetExceeded)

    finish = ToolCallRequest(id="f", name=FINISH_TOOL_NAME, arguments={"answer": "done"})
    assert gate.review(conversation, _aggregated(None, finish)).verdict is Verdict.DONE


def test_review_text_only_is_done(registry):
    gate = _gate(registry)
    conversation = Conversation("s")
    gate.begin(conversation)

    review = gate.review(conversation, _aggregated("all good"))

    assert review.verdict is Verdict.DONE
    assert review.answer == "all good"


def test_review_tool_calls_execute(registry):
    gate = _gate(registry)
    conversation = Conversation("s")
    gate.begin(conversation)

    review = gate.review(conversation, _aggregated(None, ToolCallRequest(id="1", name="bash")))

    assert review.verdict is Verdict.EXECUTE


def test_review_tool_calls_after_exhaustion_is_violation(registry):
    gate = _gate(registry, max_tool_iterations=1)
    conversation = Conversation("s")
    gate.begin(conversation)
    conversation.iteration_count = 1

    review = gate.review(conversation, _aggregated(None, ToolCallRequest(id="1", name="bash")))

    assert review.verdict is Verdict.VIOLATION
    assert isinstance(review.error, BudgetExceeded)


def test_finish_call_is_done_and_bypasses_budget(registry):
    gate = _gate(registry, tool_offer_policy=["budgeted", "explicit-completion"], max_tool_iterations=0)
    conversation = Conversation("s")
    gate.begin(conversation)
    finish = ToolCallRequest(id="f", name=FINISH_TOOL_NAME, arguments={"answer": "42"})

    review = gate.review(conversation, _aggregated("thinking", ToolCallRequest(id="1", name="bash"), finish))

    assert review.verdict is Verdict.DONE
    assert review.answer == "42"
    assert review.finish_call == finish


def test_finish_answer_falls_back_to_text(registry):
    gate = _gate(registry, tool_offer_policy="explicit-completion")
    conversation = Conversation("s")
    gate.begin(conversation)

    review = gate.review(
        conversation, _aggregated("fallback", ToolCallRequest(id="f", name=FINISH_TOOL_NAME, arguments="{bad"))
    )

    assert review.answer == "fallback"


def test_finish_ignored_without_explicit_policy(registry):
    gate = _gate(registry)
    conversation = Conversation("s")
    gate.begin(conversation)

    review = gate.review(conversation, _aggregated(None, ToolCallRequest(id="f", name=FINISH_TOOL_NAME)))

    assert review.verdict is Verdict.EXECUTE


def test_after_tools_counts_one_round_trip(registry):
    gate = _gate(registry)
    conversation = Conversation("s")
    gate.begin(conversation)
    gate.execute(conversation)

    gate.after_tools(conversation)

    assert conversation.iteration_count == 1
    assert conversation.loop_state is LoopState.AWAITING_MODEL


def test_illegal_transition_raises(registry):
    gate = _gate(registry)
    conversation = Conversation("s")

    with pytest.raises(InvalidTransitionError):
        gate.execute(conversation)
    with pytest.raises(InvalidTransitionError):
        gate.complete(conversation)


def test_fail_is_idempotent(registry):
    gate = _gate(registry)
    conversation = Conversation("s")
    gate.begin(conversation)

    gate.fail(conversation)
    gate.fail(conversation)

    assert conversation.loop_state is LoopState.FAILED
