import time
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from llm_cache.keys import fingerprint
from llm_cache.logging_config import get_logger

logger = get_logger("llm_cache.cache")

T = TypeVar("T")

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 5 * 60


@dataclass
class CacheEntry(Generic[T]):
    value: T
    created_at: float
    expires_at: float
    hit_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class LLMCache(Generic[T]):
    """
    Bounded in-memory TTL cache for model responses.

    Eviction is FIFO by insertion time, not LRU: an entry read on every
    request is still the first to go once it is the oldest. Expired entries
    are purged lazily on access or in bulk by cleanup(); the cache owns no
    timers.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        name: str = "default"
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = int(max_size)
        self.default_ttl = float(default_ttl)
        self.name = name
        self._store: Dict[str, CacheEntry[T]] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._store)

    def key_for(self, key_data: Any) -> str:
        return fingerprint(key_data)

    def get(self, key_data: Any) -> Optional[T]:
        """
        Retrieves data from cache if it exists and hasn't expired.
        Returns None on a miss.
        """
        key = self.key_for(key_data)
        entry = self._store.get(key)

        if entry is None:
            self.misses += 1
            logger.debug("Cache miss", extra={"cache_name": self.name, "cache_key": key, "cache_hit": False})
            return None

        if entry.is_expired(time.monotonic()):
            # Cleanup expired item
            del self._store[key]
            self.misses += 1
            logger.debug("Cache miss (expired)", extra={"cache_name": self.name, "cache_key": key, "cache_hit": False})
            return None

        entry.hit_count += 1
        self.hits += 1
        logger.debug("Cache hit", extra={"cache_name": self.name, "cache_key": key, "cache_hit": True})
        return entry.value

    def set(self, key_data: Any, value: T, ttl: Optional[float] = None) -> None:
        """
        Stores data in cache with a TTL, evicting the oldest entry when full.
        """
        key = self.key_for(key_data)
        ttl = self.default_ttl if ttl is None else float(ttl)

        if key in self._store:
            # Re-insert so iteration order keeps matching insertion order
            del self._store[key]
        elif len(self._store) >= self.max_size:
            self._evict_oldest()

        now = time.monotonic()
        self._store[key] = CacheEntry(value=value, created_at=now, expires_at=now + ttl)

    def has(self, key_data: Any) -> bool:
        """Existence check that leaves hit/miss counters alone."""
        key = self.key_for(key_data)
        entry = self._store.get(key)
        if entry is None:
            return False
        if entry.is_expired(time.monotonic()):
            del self._store[key]
            return False
        return True

    def invalidate(self, key_data: Any) -> bool:
        key = self.key_for(key_data)
        return self._store.pop(key, None) is not None

    def clear(self) -> None:
        """Clears the entire cache and its statistics."""
        self._store.clear()
        self.hits = 0
        self.misses = 0

    def cleanup(self) -> int:
        """Removes every expired entry. Returns how many were removed."""
        now = time.monotonic()
        expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
        for key in expired:
            del self._store[key]
        return len(expired)

    def _evict_oldest(self) -> None:
        oldest_key = None
        oldest_time = float("inf")
        for key, entry in self._store.items():
            if entry.created_at < oldest_time:
                oldest_time = entry.created_at
                oldest_key = key

        if oldest_key is not None:
            del self._store[oldest_key]
            logger.debug("Cache eviction", extra={"cache_name": self.name, "cache_key": oldest_key})

    def get_stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": len(self._store),
            "hit_rate": f"{self.hits / total * 100:.1f}%" if total > 0 else "0%",
            "max_size": self.max_size,
            "default_ttl": self.default_ttl,
        }

    def entry(self, key_data: Any) -> Optional[CacheEntry[T]]:
        """Raw entry lookup for inspection; no expiry check, no counters."""
        return self._store.get(self.key_for(key_data))
