"""Configuration module."""

from bicep_bridge.config.loader import get_default_config, load_config
from bicep_bridge.config.models import BridgeConfig, ConfigError

__all__ = [
    "BridgeConfig",
    "ConfigError",
    "get_default_config",
    "load_config",
]
