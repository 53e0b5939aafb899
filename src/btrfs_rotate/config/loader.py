"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import tomllib
from dataclasses import fields
from pathlib import Path
from typing import Any

from .schema import Config


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "btrfs-rotate" / "config.toml",
    Path("/etc/btrfs-rotate/config.toml"),
]

_BOOL_KEYS = {"btrfs_debug", "quiet", "verbose"}
_STR_KEYS = {"btrfs_command", "snapshot_dir", "lock_file", "transaction_log"}


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _parse_global(data: dict[str, Any]) -> tuple[Config, list[str]]:
    """Parse the [global] table, returning the config and warnings."""
    warnings = []
    known = {f.name for f in fields(Config)}
    values = {}

    for key, value in data.items():
        if key not in known:
            warnings.append(f"Unknown option '{key}' ignored")
            continue
        if key in _BOOL_KEYS and not isinstance(value, bool):
            raise ConfigError(f"Option '{key}' must be true or false")
        if key in _STR_KEYS and not isinstance(value, str):
            raise ConfigError(f"Option '{key}' must be a string")
        values[key] = value

    return Config(**values), warnings


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []

    snapshot_dir = Path(config.snapshot_dir)
    if (
        not config.snapshot_dir
        or snapshot_dir.is_absolute()
        or len(snapshot_dir.parts) != 1
        or config.snapshot_dir in (".", "..")
    ):
        raise ConfigError(
            f"snapshot_dir must be a single relative directory name, "
            f"got '{config.snapshot_dir}'"
        )

    if not config.btrfs_command:
        raise ConfigError("btrfs_command must not be empty")

    if config.quiet and config.verbose:
        warnings.append("Both quiet and verbose are set; quiet wins")

    return warnings


def load_config(path: Path | str) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    warnings = [f"Unknown section '{key}' ignored" for key in data if key != "global"]

    global_data = data.get("global", {})
    if not isinstance(global_data, dict):
        raise ConfigError("'global' must be a table")

    config, parse_warnings = _parse_global(global_data)
    warnings.extend(parse_warnings)

    # Validate and collect warnings
    warnings.extend(_validate_config(config))

    return config, warnings
