"""Configuration module."""

from codeagent.config.loader import ensure_sessions_dir, load_config, save_default_config
from codeagent.config.schema import (
    AgentDefaults,
    Config,
    InterruptedCallPolicy,
    ProviderConfig,
    ToolOfferPolicy,
    ToolsConfig,
)

__all__ = [
    "AgentDefaults",
    "Config",
    "InterruptedCallPolicy",
    "ProviderConfig",
    "ToolOfferPolicy",
    "ToolsConfig",
    "ensure_sessions_dir",
    "load_config",
    "save_default_config",
]
