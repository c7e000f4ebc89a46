"""Configuration module for chronicle."""

from chronicle.config.loader import get_config_path, load_config
from chronicle.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
