"""Configuration loading and tuning for ticketbridge."""

from ticketbridge.config.manager import CONNECTION_PREFIX, ConfigManager, ConfigValidationError
from ticketbridge.config.performance import CacheConfig, TransportConfig
from ticketbridge.config.settings import CONFIG_FILE, Settings

__all__ = [
    "CONFIG_FILE",
    "CONNECTION_PREFIX",
    "CacheConfig",
    "ConfigManager",
    "ConfigValidationError",
    "Settings",
    "TransportConfig",
]
