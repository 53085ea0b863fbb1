"""Transport and cache tuning with enforced bounds.

Out-of-range values are clamped rather than rejected so that a typo in a
config file degrades to a safe setting instead of breaking every command.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Upper bounds to prevent configurations that can hang a command
MAX_TIMEOUT_SECONDS = 300.0
MAX_ATTEMPTS = 10
MAX_RETRY_DELAY_SECONDS = 60.0
MAX_CACHE_TTL_SECONDS = 86400.0
MAX_CACHE_SIZE = 10000

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY_SECONDS = 0.5
DEFAULT_CACHE_TTL_SECONDS = 300.0
DEFAULT_CACHE_MAX_SIZE = 256


@dataclass
class TransportConfig:
    """HTTP settings for one connection.

    Attributes:
        timeout_seconds: Per-request timeout (1..300)
        max_attempts: Total attempts for a retryable request, first try included (1..10)
        retry_base_delay_seconds: Backoff base; attempt ``n`` waits ``base * 2**n`` (0..60)

    Values are clamped in __post_init__ using simple assignment (not frozen).
    """

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.timeout_seconds < 1:
            logger.warning(
                "timeout_seconds (%s) must be at least 1, clamping to 1", self.timeout_seconds
            )
            self.timeout_seconds = 1.0
        elif self.timeout_seconds > MAX_TIMEOUT_SECONDS:
            logger.warning(
                "timeout_seconds (%s) exceeds max (%s), clamping to max",
                self.timeout_seconds,
                MAX_TIMEOUT_SECONDS,
            )
            self.timeout_seconds = MAX_TIMEOUT_SECONDS

        if self.max_attempts < 1:
            logger.warning("max_attempts (%s) must be at least 1, clamping to 1", self.max_attempts)
            self.max_attempts = 1
        elif self.max_attempts > MAX_ATTEMPTS:
            logger.warning(
                "max_attempts (%s) exceeds max (%s), clamping to max",
                self.max_attempts,
                MAX_ATTEMPTS,
            )
            self.max_attempts = MAX_ATTEMPTS

        if self.retry_base_delay_seconds < 0:
            logger.warning(
                "retry_base_delay_seconds (%s) is negative, clamping to 0",
                self.retry_base_delay_seconds,
            )
            self.retry_base_delay_seconds = 0.0
        elif self.retry_base_delay_seconds > MAX_RETRY_DELAY_SECONDS:
            logger.warning(
                "retry_base_delay_seconds (%s) exceeds max (%s), clamping to max",
                self.retry_base_delay_seconds,
                MAX_RETRY_DELAY_SECONDS,
            )
            self.retry_base_delay_seconds = MAX_RETRY_DELAY_SECONDS


@dataclass
class CacheConfig:
    """Metadata cache settings.

    Attributes:
        ttl_seconds: How long a metadata list stays fresh (0 disables caching)
        max_size: Maximum number of cached lists before LRU eviction
    """

    ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    max_size: int = DEFAULT_CACHE_MAX_SIZE

    def __post_init__(self) -> None:
        if self.ttl_seconds < 0:
            logger.warning("ttl_seconds (%s) is negative, clamping to 0", self.ttl_seconds)
            self.ttl_seconds = 0.0
        elif self.ttl_seconds > MAX_CACHE_TTL_SECONDS:
            logger.warning(
                "ttl_seconds (%s) exceeds max (%s), clamping to max",
                self.ttl_seconds,
                MAX_CACHE_TTL_SECONDS,
            )
            self.ttl_seconds = MAX_CACHE_TTL_SECONDS

        if self.max_size < 1:
            logger.warning("max_size (%s) must be at least 1, clamping to 1", self.max_size)
            self.max_size = 1
        elif self.max_size > MAX_CACHE_SIZE:
            logger.warning(
                "max_size (%s) exceeds max (%s), clamping to max", self.max_size, MAX_CACHE_SIZE
            )
            self.max_size = MAX_CACHE_SIZE


__all__ = [
    "CacheConfig",
    "DEFAULT_CACHE_MAX_SIZE",
    "DEFAULT_CACHE_TTL_SECONDS",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_RETRY_BASE_DELAY_SECONDS",
    "DEFAULT_TIMEOUT_SECONDS",
    "MAX_ATTEMPTS",
    "MAX_RETRY_DELAY_SECONDS",
    "MAX_TIMEOUT_SECONDS",
    "TransportConfig",
]
