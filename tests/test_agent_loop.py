"""Tests for the conversation loop controller."""

import asyncio
from typing import Any
from unittest.mock import patch

import pytest

from codeagent.agent.loop import AgentLoop, LoopListener
from codeagent.agent.tools import FINISH_TOOL_NAME, Tool, ToolRegistry
from codeagent.config.schema import AgentDefaults
from codeagent.errors import BudgetExceeded, ProviderError, RequestInterrupted
from codeagent.providers.base import EndOfTurn, StreamingProvider, TextFragment, ToolCallFragment
from codeagent.session import LoopState, Role, SessionStore, ToolCallRequest, ToolOutcome, ToolStatus, Turn


class ScriptedProvider(StreamingProvider):
    """Replays one scripted response per call. A script entry may be an exception to raise."""

    def __init__(self, *responses):
        super().__init__()
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def get_default_model(self) -> str:
        return "scripted"

    async def stream(self, history, tools=None, *, system_prompt=None):
        self.calls.append({"history": list(history), "tools": tools, "system_prompt": system_prompt})
        response = self.responses.pop(0) if self.responses else [TextFragment("fallback"), EndOfTurn()]
        if isinstance(response, Exception):
            raise response
        for increment in response:
            if callable(increment):
                await increment()
                continue
            yield increment


class EchoTool(Tool):
    def __init__(self, name: str = "echo", delay: float = 0.0):
        self._name = name
        self.delay = delay
        self.invocations: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "Echo the input."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {"value": {"type": "string"}}}

    async def execute(self, **kwargs: Any) -> ToolOutcome:
        self.invocations.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        return ToolOutcome.success({"echo": kwargs.get("value")}, f"echoed {kwargs.get('value')}")


class RecordingListener(LoopListener):
    def __init__(self):
        self.text: list[str] = []
        self.results: list[str] = []
        self.retries: list[tuple[int, str]] = []

    def on_text(self, text: str) -> None:
        self.text.append(text)

    def on_tool_result(self, call: ToolCallRequest, outcome: ToolOutcome) -> None:
        self.results.append(call.id)

    def on_retry(self, attempt: int, error: ProviderError) -> None:
        self.retries.append((attempt, "".join(self.text)))
        self.text.clear()


def tool_turn(*calls: tuple[str, str, str]):
    return [ToolCallFragment(call_id, name, args) for call_id, name, args in calls] + [EndOfTurn("tool_calls")]


def text_turn(text: str):
    return [TextFragment(text), EndOfTurn()]


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "sessions")


@pytest.fixture
def echo():
    return EchoTool()


@pytest.fixture
def registry(echo):
    registry = ToolRegistry()
    registry.register(echo)
    return registry


def make_loop(provider, registry, store, listener=None, **overrides) -> AgentLoop:
    config = AgentDefaults(retry_backoff_s=0, **overrides)
    return AgentLoop(provider, registry, store, config, listener=listener)


@pytest.mark.asyncio
async def test_text_only_response_is_done(registry, store):
    provider = ScriptedProvider(text_turn("Hello!"))
    listener = RecordingListener()
    session_id = store.create()

    result = await make_loop(provider, registry, store, listener).run(session_id, "hi")

    assert result.state is LoopState.DONE
    assert result.answer == "Hello!"
    assert result.iterations == 0
    assert result.provider_calls == 1
    assert listener.text == ["Hello!"]
    turns = store.load(session_id).turns
    assert [t.role for t in turns] == [Role.USER, Role.ASSISTANT]


@pytest.mark.asyncio
async def test_tool_round_trip(echo, registry, store):
    provider = ScriptedProvider(
        tool_turn(("c1", "echo", '{"value": "x"}')),
        text_turn("The echo said x."),
    )
    session_id = store.create(system_prompt="Session prompt.")

    result = await make_loop(provider, registry, store).run(session_id, "echo x")

    assert result.state is LoopState.DONE
    assert result.iterations == 1
    assert result.provider_calls == 2
    assert echo.invocations == [{"value": "x"}]
    assert provider.calls[0]["system_prompt"] == "Session prompt."
    assert [d["function"]["name"] for d in provider.calls[0]["tools"]] == ["echo"]
    second_history = provider.calls[1]["history"]
    assert second_history[-1].role is Role.TOOL
    assert second_history[-1].tool_results[0].outcome.structured_output == {"echo": "x"}
    assert store.load(session_id).resumable


@pytest.mark.asyncio
async def test_budget_exhaustion_fails_after_n_plus_one_calls(echo, registry, store):
    provider = ScriptedProvider(*[tool_turn((f"c{i}", "echo", "{}")) for i in range(10)])
    session_id = store.create()

    result = await make_loop(provider, registry, store, max_tool_iterations=3).run(session_id, "loop forever")

    assert result.state is LoopState.FAILED
    assert isinstance(result.error, BudgetExceeded)
    assert result.provider_calls == 4
    assert len(provider.calls) == 4
    assert result.iterations == 3
    assert len(echo.invocations) == 3
    assert provider.calls[3]["tools"] is None

    conversation = store.load(session_id)
    assert conversation.resumable
    last = conversation.turns[-1]
    assert last.role is Role.ASSISTANT and last.synthetic
    violation_result = conversation.turns[-2].tool_results[0]
    assert violation_result.tool_call_id == "c3"
    assert violation_result.outcome.detail == "BudgetExceeded"


@pytest.mark.asyncio
@pytest.mark.parametrize("policy", [["explicit-completion"], ["budgeted", "explicit-completion"]])
async def test_explicit_completion_still_bounded_by_budget(echo, registry, store, policy):
    provider = ScriptedProvider(*[tool_turn((f"c{i}", "echo", "{}")) for i in range(10)])
    session_id = store.create()

    result = await make_loop(
        provider, registry, store, max_tool_iterations=3, tool_offer_policy=policy
    ).run(session_id, "never finish")

    assert result.state is LoopState.FAILED
    assert isinstance(result.error, BudgetExceeded)
    assert len(provider.calls) == 4
    assert len(echo.invocations) == 3
    assert [d["function"]["name"] for d in provider.calls[3]["tools"]] == [FINISH_TOOL_NAME]
    assert store.load(session_id).resumable


@pytest.mark.asyncio
async def test_finish_on_final_call_completes(echo, registry, store):
    provider = ScriptedProvider(
        tool_turn(("c1", "echo", "{}")),
        tool_turn(("f1", FINISH_TOOL_NAME, '{"answer": "wrapped up"}')),
    )
    session_id = store.create()

    result = await make_loop(
        provider, registry, store, max_tool_iterations=1, tool_offer_policy=["explicit-completion"]
    ).run(session_id, "go")

    assert result.state is LoopState.DONE
    assert result.answer == "wrapped up"
    assert result.provider_calls == 2


@pytest.mark.asyncio
async def test_budget_exhaustion_allows_text_answer(registry, store):
    provider = ScriptedProvider(tool_turn(("c1", "echo", "{}")), text_turn("final"))
    session_id = store.create()

    result = await make_loop(provider, registry, store, max_tool_iterations=1).run(session_id, "go")

    assert result.state is LoopState.DONE
    assert result.answer == "final"
    assert provider.calls[1]["tools"] is None


@pytest.mark.asyncio
async def test_malformed_arguments_skip_tool_and_count_iteration(echo, registry, store):
    provider = ScriptedProvider(tool_turn(("c1", "echo", '{"value": ')), text_turn("sorry"))
    session_id = store.create()

    result = await make_loop(provider, registry, store).run(session_id, "go")

    assert result.state is LoopState.DONE
    assert result.iterations == 1
    assert echo.invocations == []
    conversation = store.load(session_id)
    assert conversation.turns[1].tool_calls[0].arguments == '{"value": '
    outcome = conversation.turns[2].tool_results[0].outcome
    assert outcome.status is ToolStatus.ERROR
    assert outcome.detail == "MalformedToolArguments"


@pytest.mark.asyncio
async def test_unknown_tool_becomes_error_result(registry, store):
    provider = ScriptedProvider(tool_turn(("c1", "nope", "{}")), text_turn("ok"))
    session_id = store.create()

    result = await make_loop(provider, registry, store).run(session_id, "go")

    assert result.state is LoopState.DONE
    outcome = store.load(session_id).turns[2].tool_results[0].outcome
    assert outcome.structured_output == {"error": "Tool not found: nope"}


@pytest.mark.asyncio
async def test_results_follow_first_appearance_order(registry, store):
    slow = EchoTool("slow", delay=0.05)
    fast = EchoTool("fast")
    registry.register(slow)
    registry.register(fast)
    provider = ScriptedProvider(
        tool_turn(("a", "slow", '{"value": "1"}'), ("b", "fast", '{"value": "2"}')),
        text_turn("done"),
    )
    listener = RecordingListener()
    session_id = store.create()

    await make_loop(provider, registry, store, listener).run(session_id, "go")

    tool_turns = [t for t in store.load(session_id).turns if t.role is Role.TOOL]
    assert [t.tool_results[0].tool_call_id for t in tool_turns] == ["a", "b"]
    assert listener.results == ["a", "b"]


@pytest.mark.asyncio
async def test_explicit_completion_on_first_iteration(echo, registry, store):
    provider = ScriptedProvider(
        tool_turn(("c1", "echo", '{"value": "x"}'), ("f1", FINISH_TOOL_NAME, '{"answer": "All done."}')),
    )
    session_id = store.create()

    result = await make_loop(
        provider, registry, store, tool_offer_policy=["explicit-completion"]
    ).run(session_id, "go")

    assert result.state is LoopState.DONE
    assert result.answer == "All done."
    assert result.provider_calls == 1
    assert echo.invocations == []
    offered = [d["function"]["name"] for d in provider.calls[0]["tools"]]
    assert offered == ["echo", FINISH_TOOL_NAME]
    conversation = store.load(session_id)
    assert conversation.resumable
    statuses = {t.tool_results[0].tool_call_id: t.tool_results[0].outcome.status for t in conversation.turns[2:]}
    assert statuses == {"c1": ToolStatus.ERROR, "f1": ToolStatus.SUCCESS}


@pytest.mark.asyncio
async def test_interrupt_mid_stream_appends_nothing(registry, store):
    loop_holder: dict[str, AgentLoop] = {}

    async def interrupt_and_stall():
        loop_holder["loop"].interrupt()
        await asyncio.sleep(10)

    provider = ScriptedProvider([TextFragment("partial"), interrupt_and_stall, EndOfTurn()])
    session_id = store.create()
    loop = make_loop(provider, registry, store)
    loop_holder["loop"] = loop

    result = await asyncio.wait_for(loop.run(session_id, "go"), timeout=5)

    assert result.state is LoopState.FAILED
    assert isinstance(result.error, RequestInterrupted)
    assert result.provider_calls == 0
    turns = store.load(session_id).turns
    assert [t.role for t in turns] == [Role.USER]


@pytest.mark.asyncio
async def test_interrupt_during_tools_skips_queued_calls(echo, registry, store):
    loop_holder: dict[str, AgentLoop] = {}

    class InterruptingTool(EchoTool):
        async def execute(self, **kwargs: Any) -> ToolOutcome:
            loop_holder["loop"].interrupt()
            return await super().execute(**kwargs)

    registry.register(InterruptingTool("stopper"))
    provider = ScriptedProvider(
        tool_turn(("a", "stopper", '{"value": "1"}'), ("b", "echo", '{"value": "2"}')),
    )
    session_id = store.create()
    loop = make_loop(provider, registry, store)
    loop_holder["loop"] = loop

    result = await loop.run(session_id, "go")

    assert isinstance(result.error, RequestInterrupted)
    assert echo.invocations == []
    conversation = store.load(session_id)
    assert conversation.resumable
    skipped = conversation.turns[-1]
    assert skipped.synthetic
    assert skipped.tool_results[0].tool_call_id == "b"
    assert skipped.tool_results[0].outcome.human_summary == "Tool call cancelled before dispatch"


@pytest.mark.asyncio
async def test_task_cancellation_lets_in_flight_tool_finish(registry, store):
    slow = EchoTool("slow", delay=0.2)
    registry.register(slow)
    provider = ScriptedProvider(
        tool_turn(("a", "slow", '{"value": "1"}'), ("b", "echo", '{"value": "2"}')),
    )
    session_id = store.create()
    loop = make_loop(provider, registry, store)

    task = asyncio.create_task(loop.run(session_id, "go"))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert slow.invocations == [{"value": "1"}]
    conversation = store.load(session_id)
    assert conversation.resumable
    results = [t.tool_results[0] for t in conversation.turns if t.role is Role.TOOL]
    assert [r.tool_call_id for r in results] == ["a", "b"]
    assert results[0].outcome.ok
    assert not results[1].outcome.ok


@pytest.mark.asyncio
async def test_retryable_provider_error_is_retried(registry, store):
    provider = ScriptedProvider(ProviderError("busy", retryable=True), text_turn("recovered"))
    session_id = store.create()

    result = await make_loop(provider, registry, store).run(session_id, "go")

    assert result.state is LoopState.DONE
    assert result.answer == "recovered"
    assert len(provider.calls) == 2
    assert [t.role for t in store.load(session_id).turns] == [Role.USER, Role.ASSISTANT]


@pytest.mark.asyncio
async def test_retry_after_partial_stream_notifies_listener(registry, store):
    async def drop_connection():
        raise ProviderError("connection reset", retryable=True)

    provider = ScriptedProvider([TextFragment("Half an ans"), drop_connection], text_turn("Whole answer."))
    listener = RecordingListener()
    session_id = store.create()

    result = await make_loop(provider, registry, store, listener).run(session_id, "go")

    assert result.answer == "Whole answer."
    assert listener.retries == [(1, "Half an ans")]
    assert listener.text == ["Whole answer."]
    assert [t.text for t in store.load(session_id).turns] == ["go", "Whole answer."]


@pytest.mark.asyncio
async def test_response_metadata_is_logged(registry, store):
    provider = ScriptedProvider([TextFragment("ok"), EndOfTurn("stop", {"total_tokens": 7})])
    session_id = store.create()

    with patch("codeagent.agent.loop.logger") as mock_logger:
        await make_loop(provider, registry, store).run(session_id, "go")

    mock_logger.debug.assert_any_call(
        "provider.response session={} finish_reason={} usage={}", session_id, "stop", {"total_tokens": 7}
    )

@pytest.mark.asyncio
async def test_retries_exhausted_propagates(registry, store):
    provider = ScriptedProvider(*[ProviderError("busy", retryable=True) for _ in range(3)])
    session_id = store.create()
    loop = make_loop(provider, registry, store, max_provider_retries=2)

    with pytest.raises(ProviderError):
        await loop.run(session_id, "go")

    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_fatal_provider_error_is_not_retried(registry, store):
    provider = ScriptedProvider(ProviderError("bad key", retryable=False, status_code=401))
    session_id = store.create()

    with pytest.raises(ProviderError, match="bad key"):
        await make_loop(provider, registry, store).run(session_id, "go")

    assert len(provider.calls) == 1
    assert [t.role for t in store.load(session_id).turns] == [Role.USER]


@pytest.mark.asyncio
async def test_dangling_calls_are_discarded_before_new_request(echo, registry, store):
    session_id = store.create()
    dangling = ToolCallRequest(id="old", name="echo", arguments={"value": "stale"})
    store.append(session_id, Turn.user("earlier"))
    store.append(session_id, Turn.assistant(None, [dangling]))
    provider = ScriptedProvider(text_turn("fresh"))

    result = await make_loop(provider, registry, store).run(session_id, "again")

    assert result.state is LoopState.DONE
    assert echo.invocations == []
    turns = store.load(session_id).turns
    repair = turns[2]
    assert repair.synthetic
    assert repair.tool_results[0].tool_call_id == "old"
    assert repair.tool_results[0].outcome.detail == "Interrupted"
    assert turns[3].role is Role.USER


@pytest.mark.asyncio
async def test_dangling_calls_rerun_when_configured(echo, registry, store):
    session_id = store.create()
    dangling = ToolCallRequest(id="old", name="echo", arguments={"value": "again"})
    store.append(session_id, Turn.user("earlier"))
    store.append(session_id, Turn.assistant(None, [dangling]))
    provider = ScriptedProvider(text_turn("fresh"))

    await make_loop(provider, registry, store, interrupted_call_policy="rerun").run(session_id, "again")

    assert echo.invocations == [{"value": "again"}]
    assert store.load(session_id).resumable


@pytest.mark.asyncio
async def test_reloaded_history_matches_what_was_sent(registry, store):
    provider = ScriptedProvider(tool_turn(("c1", "echo", '{"value": "x"}')), text_turn("one"), text_turn("two"))
    session_id = store.create()
    loop = make_loop(provider, registry, store)

    await loop.run(session_id, "first")
    await loop.run(session_id, "second")

    history = provider.calls[-1]["history"]
    assert history == store.load(session_id).turns[: len(history)]
    assert history[-1].text == "second"
