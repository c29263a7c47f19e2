"""LLM providers module."""

from codeagent.config.schema import Config
from codeagent.providers.base import (
    EndOfTurn,
    OutputIncrement,
    StreamingProvider,
    TextFragment,
    ToolCallFragment,
    to_openai_messages,
)
from codeagent.providers.litellm_provider import LiteLLMProvider
from codeagent.providers.openai_provider import OpenAICompatibleProvider


def create_provider(config: Config) -> StreamingProvider:
    """Build the provider selected by ``config.provider.kind``."""
    agent = config.agent
    provider = config.provider
    if provider.kind == "openai":
        return OpenAICompatibleProvider(
            api_base=provider.api_base or "https://api.openai.com/v1",
            model=agent.model,
            api_key=provider.api_key or None,
            timeout_s=provider.timeout_s,
            max_tokens=agent.max_tokens,
            temperature=agent.temperature,
        )
    return LiteLLMProvider(
        api_key=provider.api_key or None,
        api_base=provider.api_base,
        default_model=agent.model,
        max_tokens=agent.max_tokens,
        temperature=agent.temperature,
        timeout_s=provider.timeout_s,
    )


__all__ = [
    "EndOfTurn",
    "LiteLLMProvider",
    "OpenAICompatibleProvider",
    "OutputIncrement",
    "StreamingProvider",
    "TextFragment",
    "ToolCallFragment",
    "create_provider",
    "to_openai_messages",
]
