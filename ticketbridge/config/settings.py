"""Settings dataclass for ticketbridge configuration.

This module defines the Settings dataclass that holds every global
configuration value. Connection definitions (``CONNECTION_<NAME>_*`` keys)
are dynamic and handled by ConfigManager instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ticketbridge.config.performance import (
    DEFAULT_CACHE_MAX_SIZE,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
)

DEFAULT_SEARCH_LIMIT = 50


@dataclass
class Settings:
    """Configuration settings for ticketbridge.

    All settings have defaults and can be overridden from the config files
    or the environment.

    Attributes:
        timeout_seconds: Per-request HTTP timeout
        max_attempts: Attempts per retryable request, first try included
        retry_base_delay_seconds: Exponential backoff base
        metadata_cache_ttl_seconds: Freshness of cached metadata lists (0 disables)
        metadata_cache_max_size: Cached metadata lists kept before LRU eviction
        default_connection: Connection used when a command names none
        default_search_limit: Maximum results for searches without an explicit limit
    """

    # Transport settings
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS

    # Cache settings
    metadata_cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    metadata_cache_max_size: int = DEFAULT_CACHE_MAX_SIZE

    # CLI settings
    default_connection: str = ""
    default_search_limit: int = DEFAULT_SEARCH_LIMIT

    # Config key to attribute mapping
    _key_mapping: dict[str, str] = field(
        default_factory=lambda: {
            "TIMEOUT_SECONDS": "timeout_seconds",
            "MAX_ATTEMPTS": "max_attempts",
            "RETRY_BASE_DELAY_SECONDS": "retry_base_delay_seconds",
            "METADATA_CACHE_TTL_SECONDS": "metadata_cache_ttl_seconds",
            "METADATA_CACHE_MAX_SIZE": "metadata_cache_max_size",
            "DEFAULT_CONNECTION": "default_connection",
            "DEFAULT_SEARCH_LIMIT": "default_search_limit",
        },
        repr=False,
    )

    def get_attribute_for_key(self, key: str) -> str | None:
        """Get the attribute name for a config key."""
        return self._key_mapping.get(key)

    def get_key_for_attribute(self, attr: str) -> str | None:
        """Get the config key for an attribute name."""
        for key, value in self._key_mapping.items():
            if value == attr:
                return key
        return None

    @classmethod
    def get_config_keys(cls) -> list[str]:
        """Get list of all valid configuration keys."""
        return list(cls()._key_mapping.keys())


# Default configuration file path
CONFIG_FILE = Path.home() / ".ticketbridge-config"


__all__ = [
    "CONFIG_FILE",
    "DEFAULT_SEARCH_LIMIT",
    "Settings",
]
