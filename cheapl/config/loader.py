"""Configuration loading utilities."""

import json
from pathlib import Path

from loguru import logger

from cheapl.config.schema import Config


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".cheapl" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        logger.debug(f"[Config] loaded {path}")
        return Config.model_validate(data)

    logger.debug(f"[Config] {path} not found, using defaults")
    return Config()
