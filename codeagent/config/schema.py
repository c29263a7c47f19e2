"""Configuration schema using Pydantic."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful coding assistant. You have access to tools for file operations, code search, "
    "and command execution. Use them to help the user with their coding tasks."
)


class ToolOfferPolicy(str, Enum):
    """Termination policies the ToolGate can combine."""

    BUDGETED = "budgeted"
    EXPLICIT_COMPLETION = "explicit-completion"


class InterruptedCallPolicy(str, Enum):
    """What to do with tool calls left without a result by a crash."""

    DISCARD = "discard"
    RERUN = "rerun"


class AgentDefaults(BaseModel):
    """Agent loop configuration."""

    model: str = "anthropic/claude-sonnet-4-20250514"
    max_tokens: int = 8192
    temperature: float = 0.7
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tool_iterations: int = Field(default=10, ge=0)
    tool_offer_policy: list[ToolOfferPolicy] = Field(default_factory=lambda: [ToolOfferPolicy.BUDGETED])
    max_provider_retries: int = Field(default=2, ge=0)
    retry_backoff_s: float = Field(default=1.0, ge=0)
    interrupted_call_policy: InterruptedCallPolicy = InterruptedCallPolicy.DISCARD

    @field_validator("tool_offer_policy", mode="before")
    @classmethod
    def _split_policy(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("tool_offer_policy")
    @classmethod
    def _dedupe_policy(cls, value: list[ToolOfferPolicy]) -> list[ToolOfferPolicy]:
        if not value:
            raise ValueError("tool_offer_policy needs at least one policy")
        return list(dict.fromkeys(value))

    def uses(self, policy: ToolOfferPolicy) -> bool:
        return policy in self.tool_offer_policy


class ProviderConfig(BaseModel):
    """LLM provider configuration."""

    kind: str = Field(default="litellm", pattern="^(openai|litellm)$")
    api_key: str = ""
    api_base: str | None = None
    timeout_s: float = 120.0


class ToolsConfig(BaseModel):
    """Built-in tool configuration."""

    enabled: list[str] = Field(default_factory=lambda: ["bash", "edit_file", "file_search", "url_fetch"])
    exec_timeout_s: int = 30
    fetch_max_chars: int = 10000
    restrict_to_workspace: bool = True


class Config(BaseSettings):
    """Root configuration for codeagent."""

    model_config = SettingsConfigDict(env_prefix="CODEAGENT_", env_nested_delimiter="__")

    agent: AgentDefaults = Field(default_factory=AgentDefaults)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    sessions_dir: str = "~/.codeagent/sessions"
    log_level: str = "WARNING"

    @property
    def sessions_path(self) -> Path:
        """Get expanded sessions directory."""
        return Path(self.sessions_dir).expanduser()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Values from the config file arrive as init kwargs; the environment overrides them.
        return env_settings, init_settings, dotenv_settings, file_secret_settings
