"""Conversation loop controller: the core processing engine."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass

from loguru import logger

from codeagent.agent.aggregator import AggregatedTurn, TurnAggregator
from codeagent.agent.gate import ToolGate, ToolOffer, Verdict
from codeagent.agent.tools.registry import ToolRegistry
from codeagent.config.schema import AgentDefaults, InterruptedCallPolicy
from codeagent.errors import CodeAgentError, ProviderError, RequestInterrupted, SessionIOError
from codeagent.providers.base import StreamingProvider
from codeagent.session.models import Conversation, LoopState, ToolCallRequest, ToolOutcome, Turn
from codeagent.session.store import SessionStore
from codeagent.utils.helpers import preview


@dataclass(frozen=True)
class LoopResult:
    """
    Terminal outcome of one user request.

    ``iterations`` counts tool-executing round-trips, ``provider_calls``
    counts provider responses that produced a turn.
    """

    state: LoopState
    answer: str = ""
    iterations: int = 0
    provider_calls: int = 0
    error: CodeAgentError | None = None

    @property
    def ok(self) -> bool:
        return self.state is LoopState.DONE


class LoopListener:
    """Hooks a front end overrides to render progress. The defaults do nothing."""

    def on_text(self, text: str) -> None:
        pass

    def on_tool_start(self, call: ToolCallRequest) -> None:
        pass

    def on_tool_result(self, call: ToolCallRequest, outcome: ToolOutcome) -> None:
        pass

    def on_retry(self, attempt: int, error: ProviderError) -> None:
        """A provider call failed and will be retried; text already streamed for it is void."""
        pass


class AgentLoop:
    """
    The agent loop.

    1. Appends the user message to the session
    2. Asks the ToolGate which tools to offer
    3. Streams the model response and assembles it into a turn
    4. Executes requested tools in order, appending each result
    5. Repeats until the Gate declares the request done or failed
    """

    def __init__(
        self,
        provider: StreamingProvider,
        tools: ToolRegistry,
        store: SessionStore,
        config: AgentDefaults | None = None,
        listener: LoopListener | None = None,
    ):
        self.provider = provider
        self.tools = tools
        self.store = store
        self.config = config or AgentDefaults()
        self.listener = listener or LoopListener()
        self.gate = ToolGate(tools, self.config)
        self._interrupt = asyncio.Event()

    def interrupt(self) -> None:
        """Abort the in-flight provider call, or stop dispatch after the current tool call."""
        logger.info("loop.interrupt requested")
        self._interrupt.set()

    async def run(self, session_id: str, message: str) -> LoopResult:
        """
        Process one user message to a terminal state.

        Raises:
            ProviderError: Fatal provider failure or retries exhausted.
            SessionIOError: The session could not be read or written.
        """
        self._interrupt = asyncio.Event()
        conversation = self.store.load(session_id)
        info = self.store.info(session_id)
        system_prompt = info.system_prompt or self.config.system_prompt

        self.gate.begin(conversation)
        provider_calls = 0
        logger.info("loop.start session={} message={}", session_id, preview(message, 80))

        try:
            if conversation.unresolved_calls:
                await self._repair(conversation)
            self._append(conversation, Turn.user(message))

            while True:
                offer = self.gate.offer(conversation)
                aggregated = await self._call_provider(conversation, offer, system_prompt)
                if aggregated is None:
                    return self._interrupted(conversation, provider_calls)
                provider_calls += 1
                logger.debug(
                    "provider.response session={} finish_reason={} usage={}",
                    session_id,
                    aggregated.finish_reason,
                    aggregated.usage,
                )
                self._append(conversation, aggregated.turn)

                review = self.gate.review(conversation, aggregated)
                if review.verdict is Verdict.DONE:
                    if review.finish_call is not None:
                        self._resolve_finish(conversation, aggregated, review.finish_call)
                    self.gate.complete(conversation)
                    logger.info(
                        "loop.done session={} iterations={} provider_calls={}",
                        session_id,
                        conversation.iteration_count,
                        provider_calls,
                    )
                    return LoopResult(
                        state=LoopState.DONE,
                        answer=review.answer,
                        iterations=conversation.iteration_count,
                        provider_calls=provider_calls,
                    )

                if review.verdict is Verdict.VIOLATION:
                    error = review.error
                    for call in aggregated.tool_calls:
                        self._append(conversation, Turn.tool(call, ToolOutcome.from_error(error), synthetic=True))
                    notice = f"Stopped: {error}"
                    self._append(conversation, Turn.assistant(notice, synthetic=True))
                    self.gate.fail(conversation)
                    logger.warning("loop.budget_exceeded session={} max={}", session_id, self.gate.max_iterations)
                    return LoopResult(
                        state=LoopState.FAILED,
                        answer=notice,
                        iterations=conversation.iteration_count,
                        provider_calls=provider_calls,
                        error=error,
                    )

                self.gate.execute(conversation)
                interrupted = await self._dispatch(conversation, aggregated)
                self.gate.after_tools(conversation)
                if interrupted:
                    return self._interrupted(conversation, provider_calls)
        except (ProviderError, SessionIOError) as e:
            logger.error("loop.failed session={} error={}", session_id, e)
            self.gate.fail(conversation)
            raise
        except asyncio.CancelledError:
            logger.warning("loop.cancelled session={}", session_id)
            self.gate.fail(conversation)
            raise

    def _interrupted(self, conversation: Conversation, provider_calls: int) -> LoopResult:
        self.gate.fail(conversation)
        return LoopResult(
            state=LoopState.FAILED,
            iterations=conversation.iteration_count,
            provider_calls=provider_calls,
            error=RequestInterrupted("Request interrupted by user"),
        )

    def _append(self, conversation: Conversation, turn: Turn) -> None:
        self.store.append(conversation.session_id, turn)
        conversation.append(turn)

    async def _call_provider(
        self,
        conversation: Conversation,
        offer: ToolOffer,
        system_prompt: str | None,
    ) -> AggregatedTurn | None:
        """Stream one response, retrying transient failures. None means interrupted."""
        retries = self.config.max_provider_retries
        for attempt in range(retries + 1):
            try:
                return await self._stream_once(conversation, offer, system_prompt)
            except ProviderError as e:
                if not e.retryable or attempt >= retries:
                    raise
                delay = self.config.retry_backoff_s * (2**attempt)
                logger.warning(
                    "provider.retry attempt={}/{} delay={:.1f}s error={}",
                    attempt + 1,
                    retries,
                    delay,
                    e,
                )
                self.listener.on_retry(attempt + 1, e)
                if await self._wait_interrupt(delay):
                    return None
        return None

    async def _wait_interrupt(self, delay: float) -> bool:
        try:
            await asyncio.wait_for(self._interrupt.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _stream_once(
        self,
        conversation: Conversation,
        offer: ToolOffer,
        system_prompt: str | None,
    ) -> AggregatedTurn | None:
        aggregator = TurnAggregator(on_text=self.listener.on_text)
        stream = self.provider.stream(
            conversation.history,
            offer.definitions if offer.offer_tools else None,
            system_prompt=system_prompt,
        )
        stream_task = asyncio.ensure_future(aggregator.consume(stream))
        interrupt_task = asyncio.ensure_future(self._interrupt.wait())
        try:
            await asyncio.wait({stream_task, interrupt_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            interrupt_task.cancel()
            if not stream_task.done():
                stream_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await stream_task

        if self._interrupt.is_set():
            logger.info("provider.stream.interrupted session={}", conversation.session_id)
            return None
        return stream_task.result()

    async def _dispatch(self, conversation: Conversation, aggregated: AggregatedTurn) -> bool:
        """Run the turn's tool calls in order. Returns True if an interrupt stopped dispatch."""
        calls = aggregated.tool_calls
        for index, call in enumerate(calls):
            if self._interrupt.is_set():
                self._skip_remaining(conversation, calls[index:])
                return True

            outcome = aggregated.rejected.get(call.id)
            if outcome is None:
                self.listener.on_tool_start(call)
                task = asyncio.ensure_future(self.tools.execute(call.name, call.arguments))
                try:
                    outcome = await asyncio.shield(task)
                except asyncio.CancelledError:
                    # The in-flight call runs to completion; queued calls are never dispatched.
                    outcome = await task
                    self.listener.on_tool_result(call, outcome)
                    self._append(conversation, Turn.tool(call, outcome))
                    self._skip_remaining(conversation, calls[index + 1 :])
                    raise
            else:
                logger.warning("tool.call.rejected name={} id={}", call.name, call.id)

            self.listener.on_tool_result(call, outcome)
            self._append(conversation, Turn.tool(call, outcome))
        return False

    def _skip_remaining(self, conversation: Conversation, calls: tuple[ToolCallRequest, ...]) -> None:
        for call in calls:
            outcome = ToolOutcome.failure("Tool call cancelled before dispatch", detail="RequestInterrupted")
            self._append(conversation, Turn.tool(call, outcome, synthetic=True))

    def _resolve_finish(
        self,
        conversation: Conversation,
        aggregated: AggregatedTurn,
        finish_call: ToolCallRequest,
    ) -> None:
        """Give every call in a completing turn a result so the session stays resumable."""
        for call in aggregated.tool_calls:
            if call.id == finish_call.id:
                outcome = ToolOutcome.success({"completed": True}, "Conversation completed")
            else:
                outcome = ToolOutcome.failure("Not executed: conversation completed", detail="Skipped")
            self._append(conversation, Turn.tool(call, outcome, synthetic=True))

    async def _repair(self, conversation: Conversation) -> None:
        """Resolve tool calls left dangling by an earlier crash."""
        policy = self.config.interrupted_call_policy
        for call in list(conversation.unresolved_calls):
            logger.warning(
                "session.repair session={} call={} name={} policy={}",
                conversation.session_id,
                call.id,
                call.name,
                policy.value,
            )
            if policy is InterruptedCallPolicy.RERUN and call.name and isinstance(call.arguments, dict):
                outcome = await self.tools.execute(call.name, call.arguments)
                self._append(conversation, Turn.tool(call, outcome))
            else:
                outcome = ToolOutcome.failure(
                    "Tool call was interrupted before it produced a result; discarded",
                    detail="Interrupted",
                )
                self._append(conversation, Turn.tool(call, outcome, synthetic=True))
        conversation.unresolved_calls.clear()
