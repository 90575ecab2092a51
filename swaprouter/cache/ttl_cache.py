"""In-memory TTL cache with lazy eviction and fetch-or-compute semantics"""

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from swaprouter.errors import CacheProducerFailure
from swaprouter.monitoring import metrics
from swaprouter.utils.events import CACHE_ERROR, CACHE_HIT, CACHE_MISS, EventChannel

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 60.0


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float


class TTLCache:
    """
    Key/value store whose entries expire after a per-entry TTL.

    Expired entries are treated as absent and removed lazily on lookup;
    cleanup() sweeps all expired entries at once. Emits "hit", "miss" and
    "error" on its event channel for metrics collection.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        events: Optional[EventChannel] = None,
    ):
        """
        Initialize cache.

        Args:
            clock: Time source in seconds, injectable for tests
            events: Event channel for hit/miss/error notifications
        """
        self._entries: Dict[str, CacheEntry] = {}
        self._clock = clock
        self.events = events or EventChannel("cache")
        self._logger = logger.bind(component="ttl_cache")

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at < entry.ttl

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry, self._clock()):
            del self._entries[key]
            return None
        return entry

    def set(self, key: str, value: Any, ttl: float = DEFAULT_TTL_SECONDS) -> None:
        """Store a value for ttl seconds"""
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl=ttl)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when missing or expired"""
        entry = self._lookup(key)
        if entry is None:
            self._record_miss(key)
            return None
        self._record_hit(key)
        return entry.value

    def peek(self, key: str) -> Optional[Any]:
        """Like get, without recording a hit or miss"""
        entry = self._lookup(key)
        return entry.value if entry is not None else None

    def __contains__(self, key: str) -> bool:
        return self._lookup(key) is not None

    async def get_or_fetch(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl: float = DEFAULT_TTL_SECONDS,
    ) -> Any:
        """
        Return the fresh cached value or produce, store and return a new one.

        Concurrent callers for the same key are not de-duplicated; each
        miss awaits the producer and the last result wins.

        Args:
            key: Cache key
            producer: Zero-argument coroutine function computing the value
            ttl: Time-to-live in seconds for the produced value

        Raises:
            CacheProducerFailure: The producer raised; the cache is unchanged
        """
        entry = self._lookup(key)
        if entry is not None:
            self._record_hit(key)
            return entry.value

        self._record_miss(key)

        try:
            value = await producer()
        except Exception as e:
            self._logger.warning(
                "cache_producer_failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            self.events.emit(CACHE_ERROR, e)
            raise CacheProducerFailure(key, e) from e

        self.set(key, value, ttl)
        return value

    def delete(self, key: str) -> bool:
        """Remove a key; returns True when something was removed"""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        """Remove every expired entry and return how many were dropped"""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if not self._is_fresh(e, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self._logger.debug("cache_cleanup", removed=len(expired))
        return len(expired)

    def keys(self, prefix: Optional[str] = None) -> List[str]:
        """List keys of fresh entries, optionally filtered by prefix"""
        now = self._clock()
        return [
            key
            for key, entry in self._entries.items()
            if self._is_fresh(entry, now) and (prefix is None or key.startswith(prefix))
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def _record_hit(self, key: str) -> None:
        metrics.cache_requests.labels(result="hit").inc()
        self.events.emit(CACHE_HIT, key)

    def _record_miss(self, key: str) -> None:
        metrics.cache_requests.labels(result="miss").inc()
        self.events.emit(CACHE_MISS, key)
