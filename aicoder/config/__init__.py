"""Configuration module for aicoder."""

from aicoder.config.loader import load_config, get_config_path
from aicoder.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
