"""Configuration system for btrfs-rotate.

This module provides TOML-based configuration loading, validation,
and schema definitions.
"""

from .loader import ConfigError, find_config_file, load_config
from .schema import Config

__all__ = [
    "Config",
    "load_config",
    "find_config_file",
    "ConfigError",
]
