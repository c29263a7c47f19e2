"""OpenAI-compatible streaming provider."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx
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

_DATA_PREFIX = "data:"
_DONE = "[DONE]"


class OpenAICompatibleProvider(StreamingProvider):
    """Provider for OpenAI-style ``/chat/completions`` endpoints using server-sent events."""

    def __init__(
        self,
        api_base: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        api_key: str | None = None,
        timeout_s: float = 120.0,
        max_tokens: int = 8192,
        temperature: float = 0.7,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(api_key, api_base.rstrip("/"))
        self.model = model
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._transport = transport

    def get_default_model(self) -> str:
        return self.model

    def _build_payload(
        self,
        history: Sequence[Turn],
        tools: list[dict[str, Any]] | None,
        system_prompt: str | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(history, system_prompt),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        return payload

    async def stream(
        self,
        history: Sequence[Turn],
        tools: list[dict[str, Any]] | None = None,
        *,
        system_prompt: str | None = None,
    ) -> AsyncIterator[OutputIncrement]:
        payload = self._build_payload(history, tools, system_prompt)
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        endpoint = f"{self.api_base}/chat/completions"

        logger.debug(
            "provider.request model={} messages={} tools={}",
            self.model,
            len(payload["messages"]),
            len(tools or []),
        )
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                async with client.stream("POST", endpoint, headers=headers, json=payload) as resp:
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        raise ProviderError(
                            f"Model endpoint returned {resp.status_code}: {body[:500]}",
                            retryable=is_retryable_status(resp.status_code),
                            status_code=resp.status_code,
                        )
                    async for increment in self._parse_events(resp.aiter_lines()):
                        yield increment
        except httpx.TimeoutException as e:
            raise ProviderError(f"Model endpoint timed out: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise ProviderError(f"Model endpoint unreachable: {e}", retryable=True) from e

    async def _parse_events(self, lines: AsyncIterator[str]) -> AsyncIterator[OutputIncrement]:
        """Translate SSE ``data:`` lines into increments."""
        ids_by_index: dict[int, str] = {}
        finish_reason: str | None = None
        usage: dict[str, int] = {}

        async for line in lines:
            line = line.strip()
            if not line.startswith(_DATA_PREFIX):
                continue
            data = line[len(_DATA_PREFIX) :].strip()
            if data == _DONE:
                yield EndOfTurn(finish_reason=finish_reason or "stop", usage=usage)
                return

            try:
                chunk = json.loads(data)
            except json.JSONDecodeError as e:
                raise ProviderError(f"Undecodable stream chunk: {data[:200]}") from e
            if "error" in chunk:
                raise ProviderError(f"Model endpoint error: {chunk['error']}")

            if chunk.get("usage"):
                usage = {
                    "prompt_tokens": chunk["usage"].get("prompt_tokens") or 0,
                    "completion_tokens": chunk["usage"].get("completion_tokens") or 0,
                    "total_tokens": chunk["usage"].get("total_tokens") or 0,
                }

            for choice in chunk.get("choices") or []:
                delta = choice.get("delta") or {}
                content = delta.get("content")
                if content:
                    yield TextFragment(content)
                for raw_call in delta.get("tool_calls") or []:
                    index = raw_call.get("index", 0)
                    if index not in ids_by_index:
                        ids_by_index[index] = raw_call.get("id") or f"call_{index}"
                    function = raw_call.get("function") or {}
                    yield ToolCallFragment(
                        id=ids_by_index[index],
                        name=function.get("name") or None,
                        arguments=function.get("arguments") or "",
                    )
                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]

        # Some servers close the stream without the [DONE] sentinel.
        if finish_reason is not None:
            yield EndOfTurn(finish_reason=finish_reason, usage=usage)
