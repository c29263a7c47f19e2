"""LiteLLM-based streaming provider implementation."""

from collections.abc import AsyncIterator, Sequence
from typing import Any

from loguru import logger

from codeagent.errors import ProviderError
from codeagent.providers.base import (
    EndOfTurn,
    OutputIncrement,
    StreamingProvider,
    TextFragment,
    ToolCallFragment,
    is_retryable_status,
    to_openai_messages,
)
from codeagent.session.models import Turn


class LiteLLMProvider(StreamingProvider):
    """
    LLM provider using LiteLLM as a unified gateway.

    Supports OpenRouter, Anthropic, OpenAI, Gemini, vLLM, and other
    providers through LiteLLM's routing layer.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-sonnet-4-20250514",
        max_tokens: int = 8192,
        temperature: float = 0.7,
        timeout_s: float | None = None,
    ):
        super().__init__(api_key, api_base)
        self._default_model = default_model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout_s = timeout_s

    async def stream(
        self,
        history: Sequence[Turn],
        tools: list[dict[str, Any]] | None = None,
        *,
        system_prompt: str | None = None,
    ) -> AsyncIterator[OutputIncrement]:
        """Stream a chat completion via LiteLLM."""
        try:
            import litellm
        except ImportError:
            raise RuntimeError("litellm is required. Install with: pip install litellm")

        messages = to_openai_messages(history, system_prompt)
        kwargs: dict[str, Any] = {
            "model": self._default_model,
            "messages": messages,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "stream": True,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self._timeout_s:
            kwargs["timeout"] = self._timeout_s
        if tools:
            kwargs["tools"] = tools

        logger.debug(f"LLM request: model={self._default_model}, messages={len(messages)}")

        try:
            response = await litellm.acompletion(**kwargs)
            ids_by_index: dict[int, str] = {}
            finish_reason: str | None = None
            usage: dict[str, int] = {}

            async for chunk in response:
                chunk_usage = getattr(chunk, "usage", None)
                if chunk_usage:
                    usage = {
                        "prompt_tokens": getattr(chunk_usage, "prompt_tokens", 0) or 0,
                        "completion_tokens": getattr(chunk_usage, "completion_tokens", 0) or 0,
                        "total_tokens": getattr(chunk_usage, "total_tokens", 0) or 0,
                    }
                if not chunk.choices:
                    continue

                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None:
                    if delta.content:
                        yield TextFragment(delta.content)
                    for tc in getattr(delta, "tool_calls", None) or []:
                        index = getattr(tc, "index", None) or 0
                        if index not in ids_by_index:
                            ids_by_index[index] = tc.id or f"call_{index}"
                        function = tc.function
                        yield ToolCallFragment(
                            id=ids_by_index[index],
                            name=(function.name if function else None) or None,
                            arguments=(function.arguments if function else None) or "",
                        )
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except ProviderError:
            raise
        except Exception as e:
            raise self._classify(litellm, e) from e

        yield EndOfTurn(finish_reason=finish_reason or "stop", usage=usage)

    @staticmethod
    def _classify(litellm: Any, exc: Exception) -> ProviderError:
        transient = (litellm.exceptions.Timeout, litellm.exceptions.APIConnectionError)
        status_code = getattr(exc, "status_code", None)
        if isinstance(exc, transient):
            retryable = True
        else:
            retryable = is_retryable_status(status_code)
        logger.warning(f"LLM request failed: {type(exc).__name__} status={status_code} retryable={retryable}")
        return ProviderError(str(exc) or type(exc).__name__, retryable=retryable, status_code=status_code)

    def get_default_model(self) -> str:
        """Get the default model for this provider."""
        return self._default_model
