"""Configuration module for cheapl."""

from cheapl.config.loader import load_config
from cheapl.config.schema import Config

__all__ = ["Config", "load_config"]
