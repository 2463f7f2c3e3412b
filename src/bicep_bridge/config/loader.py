"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from bicep_bridge.config.models import BridgeConfig, ConfigError

CONFIG_FILE_NAME = "bicep-bridge.toml"
CONFIG_ENV_VAR = "BICEP_BRIDGE_CONFIG"

# Environment variable -> config key
ENV_OVERRIDES = {
    "BICEP_PATH": "bicep_path",
    "BICEP_BRIDGE_TRANSPORT": "transport",
    "BICEP_BRIDGE_LOG_LEVEL": "log_level",
}


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    paths = [Path(CONFIG_FILE_NAME)]  # Current directory
    if env_path := os.environ.get(CONFIG_ENV_VAR):
        paths.append(Path(env_path))
    return paths


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Overlay environment variables onto raw config values."""
    for env_var, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_var, "").strip()
        if not value:
            continue
        if key == "log_level":
            value = value.upper()
        config[key] = value
    return config


def _validate(raw_config: dict[str, Any], source: str) -> BridgeConfig:
    try:
        return BridgeConfig.model_validate(_apply_env_overrides(raw_config))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {source}: {e}") from e


def load_config(path: Path | None = None) -> BridgeConfig:
    """Load configuration from a TOML file.

    Args:
        path: Explicit path to config file. If None, searches default locations
            and falls back to defaults when none exists.

    Returns:
        Validated BridgeConfig instance, with environment overrides applied.

    Raises:
        ConfigError: If the explicit file is missing, or the file is invalid.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
    else:
        for default_path in _get_default_config_paths():
            expanded = default_path.expanduser()
            if expanded.exists():
                config_path = expanded
                break

    if config_path is None:
        return get_default_config()

    try:
        with config_path.open("rb") as f:
            raw_config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    return _validate(raw_config, str(config_path))


def get_default_config() -> BridgeConfig:
    """Get the default configuration with environment overrides applied."""
    return _validate({}, "environment")
