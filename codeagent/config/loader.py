"""Configuration loader for codeagent."""

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from codeagent.config.schema import Config
from codeagent.errors import ConfigurationError

DEFAULT_CONFIG_DIR = Path.home() / ".codeagent"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file and environment variables.

    Priority: environment variables > config file > defaults.

    Args:
        config_path: Optional path to config file. Defaults to ~/.codeagent/config.json.

    Returns:
        Loaded configuration.

    Raises:
        ConfigurationError: If the file or the environment holds invalid values.
    """
    path = config_path or DEFAULT_CONFIG_FILE

    data: dict = {}
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read config from {path}: {e}, using defaults")
            data = {}

    try:
        config = Config(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    if data:
        logger.debug(f"Config loaded from {path}")
    return config


def save_default_config(config_path: Path | None = None) -> Path:
    """
    Save default configuration to file.

    Args:
        config_path: Optional path to save config. Defaults to ~/.codeagent/config.json.

    Returns:
        Path where config was saved.
    """
    path = config_path or DEFAULT_CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)

    config = Config()
    data = config.model_dump(mode="json")
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")

    logger.info(f"Default config saved to {path}")
    return path


def ensure_sessions_dir(config: Config) -> Path:
    """Create the sessions directory if needed and return it."""
    sessions = config.sessions_path
    sessions.mkdir(parents=True, exist_ok=True)
    return sessions
