"""
TTL Cache Service

This module provides an in-process key/value cache with per-entry expiry and
capacity-bounded eviction.

Eviction order is insertion order: when the cache is full the entry that was
inserted (or last overwritten) earliest is removed, regardless of how often it
was read. Reads never reorder entries.

Pattern: Repository pattern with an in-memory dict as storage
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from resilience_toolkit.observability.logging import get_logger
from resilience_toolkit.observability.metrics import record_cache_operation

logger = get_logger(__name__)

V = TypeVar("V")


# =============================================================================
# Default Configuration
# =============================================================================


DEFAULT_CACHE_TTL_SECONDS = 300.0  # 5 minutes
DEFAULT_CACHE_MAX_SIZE = 1000


# =============================================================================
# Cache Entry
# =============================================================================


@dataclass
class CacheEntry(Generic[V]):
    """
    A single cached value.

    Attributes:
        value: The cached value
        stored_at: Clock reading when the value was stored
        ttl_seconds: Lifetime of the entry
        access_count: Number of successful reads
    """

    value: V
    stored_at: float
    ttl_seconds: float
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        """An entry is visible while now - stored_at <= ttl_seconds."""
        return now - self.stored_at > self.ttl_seconds


# =============================================================================
# TTLCache Service
# =============================================================================


class TTLCache(Generic[V]):
    """
    Key/value cache with per-entry TTL and insertion-order eviction.

    Example:
        >>> cache = TTLCache(max_size=2)
        >>> cache.set("a", 1)
        >>> cache.get("a")
        1

    Attributes:
        max_size: Maximum number of entries held at once
        default_ttl_seconds: TTL applied when set() is called without one
    """

    def __init__(
        self,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
        default_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize TTLCache.

        Args:
            max_size: Maximum number of entries (must be >= 1)
            default_ttl_seconds: Default entry lifetime in seconds
            clock: Monotonic clock returning seconds (default: time.monotonic)
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        self._max_size = max_size
        self._default_ttl_seconds = default_ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: dict[str, CacheEntry[V]] = {}

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_settings(cls, settings: Any) -> "TTLCache[Any]":
        """Create a cache sized from application settings."""
        return cls(
            max_size=settings.cache_max_size,
            default_ttl_seconds=settings.cache_default_ttl_seconds,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def max_size(self) -> int:
        """Maximum number of entries held at once."""
        return self._max_size

    @property
    def default_ttl_seconds(self) -> float:
        """TTL applied when none is given to set()."""
        return self._default_ttl_seconds

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    # =========================================================================
    # Operations
    # =========================================================================

    def set(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        """
        Store a value with expiry.

        When the cache is full and the key is new, the oldest inserted entry
        is evicted first. Overwriting an existing key replaces it and moves it
        to the newest insertion position without evicting anything.

        Args:
            key: Cache key
            value: Value to store
            ttl_seconds: Entry lifetime (defaults to default_ttl_seconds)
        """
        ttl = self._default_ttl_seconds if ttl_seconds is None else ttl_seconds

        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_size:
            self._evict_oldest()

        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl_seconds=ttl)

    def get(self, key: str) -> Optional[V]:
        """
        Get a value if present and not expired.

        Expired entries are deleted lazily on read.

        Args:
            key: Cache key

        Returns:
            The cached value or None when absent or expired
        """
        entry = self._entries.get(key)

        if entry is None:
            self._record_miss()
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._record_miss()
            return None

        entry.access_count += 1
        self._hits += 1
        record_cache_operation("hit", len(self._entries))
        return entry.value

    def delete(self, key: str) -> bool:
        """
        Remove a single key.

        Returns:
            True if the key was present
        """
        return self._entries.pop(key, None) is not None

    def invalidate(self, match: Union[str, Callable[[str], bool]]) -> int:
        """
        Remove every entry whose key matches.

        Used for namespace-style invalidation, e.g. every entry that belongs
        to one project after a write to that project.

        Args:
            match: Substring the key must contain, or a predicate on the key

        Returns:
            Number of entries removed
        """
        def matches(key: str) -> bool:
            if callable(match):
                return match(key)
            return match in key

        doomed = [key for key in self._entries if matches(key)]
        for key in doomed:
            del self._entries[key]

        if doomed:
            logger.debug("cache invalidated", removed=len(doomed))
        return len(doomed)

    def cleanup_expired(self) -> int:
        """
        Sweep out every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        """Remove all entries and reset statistics."""
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # =========================================================================
    # Statistics
    # =========================================================================

    @property
    def hit_rate(self) -> float:
        """Hit rate as a percentage of all reads (0.0 when no reads yet)."""
        total = self._hits + self._misses
        if total == 0:
            return 0.0
        return self._hits / total * 100

    def get_stats(self) -> dict[str, Any]:
        """
        Get cumulative cache statistics.

        Returns:
            Plain dict with hits, misses, evictions, size, max_size, hit_rate
        """
        return {
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "size": len(self._entries),
            "max_size": self._max_size,
            "hit_rate": round(self.hit_rate, 2),
        }

    # =========================================================================
    # Internals
    # =========================================================================

    def _evict_oldest(self) -> None:
        oldest_key = next(iter(self._entries))
        del self._entries[oldest_key]
        self._evictions += 1
        record_cache_operation("eviction", len(self._entries))
        logger.debug("cache entry evicted", key=oldest_key)

    def _record_miss(self) -> None:
        self._misses += 1
        record_cache_operation("miss", len(self._entries))
