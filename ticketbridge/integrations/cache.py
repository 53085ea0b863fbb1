"""Caching layer for metadata lookups.

Metadata lists (projects, priorities, statuses, ...) change rarely but are
requested often by interactive consumers. Each TicketProvider owns one
MetadataCache; nothing is shared between connections.

Concurrency Model:
    Uses threading.Lock for thread-safe access, so a cache may be read from
    worker threads as well as the event loop. Entries hold tuples of frozen
    MetadataItem objects, so reads return them without copying.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from ticketbridge.config.performance import CacheConfig
from ticketbridge.integrations.models import MetadataItem, MetadataKind

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class MetadataCacheKey:
    """Identifies one metadata list: kind plus its optional scope."""

    kind: MetadataKind
    project_key: str | None = None
    board_id: str | None = None

    def __str__(self) -> str:
        scope = "/".join(part for part in (self.project_key, self.board_id) if part)
        return f"{self.kind.value}:{scope}" if scope else self.kind.value


@dataclass(frozen=True)
class CachedMetadata:
    """Cached list with expiration metadata. All timestamps use UTC."""

    items: tuple[MetadataItem, ...]
    cached_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class MetadataCache:
    """In-memory metadata cache with TTL expiry and LRU eviction.

    A TTL of zero disables caching: ``set`` becomes a no-op.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock or _utc_now
        self._entries: OrderedDict[MetadataCacheKey, CachedMetadata] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def enabled(self) -> bool:
        return self.config.ttl_seconds > 0

    def get(self, key: MetadataCacheKey) -> list[MetadataItem] | None:
        """Return the cached list if present and fresh."""
        now = self._clock()
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                self.misses += 1
                return None
            if cached.is_expired(now):
                del self._entries[key]
                self.misses += 1
                logger.debug("Metadata cache expired for %s", key)
                return None
            self._entries.move_to_end(key)
            self.hits += 1
        logger.debug("Metadata cache hit for %s", key)
        return list(cached.items)

    def set(self, key: MetadataCacheKey, items: Sequence[MetadataItem]) -> None:
        """Store a list, evicting the least recently used entries when full."""
        if not self.enabled:
            return
        now = self._clock()
        entry = CachedMetadata(
            items=tuple(items),
            cached_at=now,
            expires_at=now + timedelta(seconds=self.config.ttl_seconds),
        )
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.config.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("LRU evicted: %s", evicted)
            self._entries[key] = entry

    def invalidate(self, key: MetadataCacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.debug("Cleared %d metadata cache entries", count)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["CachedMetadata", "MetadataCache", "MetadataCacheKey"]
