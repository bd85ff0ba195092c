"""
Named response caches, built once at startup and passed to whoever needs them.

Each cache is paired with exactly one SingleFlight, so every caller of a
given cache shares the same in-flight registry.
"""
import asyncio
from typing import Any, Dict, List, Optional

from llm_cache.cache import LLMCache
from llm_cache.config import Settings, load_settings
from llm_cache.logging_config import get_logger
from llm_cache.ratelimit import RateLimiter
from llm_cache.singleflight import SingleFlight

logger = get_logger("llm_cache.caches")


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


class CacheRegistry:
    def __init__(self, caches: Dict[str, LLMCache]):
        self._caches = dict(caches)
        self._flights = {name: SingleFlight(cache) for name, cache in self._caches.items()}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CacheRegistry":
        settings = settings or load_settings()
        return cls({
            name: LLMCache(max_size=cs.max_size, default_ttl=cs.default_ttl, name=name)
            for name, cs in settings.caches.items()
        })

    def get(self, name: str) -> LLMCache:
        try:
            return self._caches[name]
        except KeyError:
            raise KeyError(f"Unknown cache: {name}") from None

    def __getitem__(self, name: str) -> LLMCache:
        return self.get(name)

    def flights(self, name: str) -> SingleFlight:
        """The in-flight registry bound to the named cache."""
        try:
            return self._flights[name]
        except KeyError:
            raise KeyError(f"Unknown cache: {name}") from None

    def names(self) -> List[str]:
        return list(self._caches)

    def cleanup_all(self) -> Dict[str, int]:
        return {name: cache.cleanup() for name, cache in self._caches.items()}

    def clear_all(self) -> None:
        for cache in self._caches.values():
            cache.clear()

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: cache.get_stats() for name, cache in self._caches.items()}


async def run_periodic_cleanup(
    registry: CacheRegistry,
    interval: float = 10 * 60,
    rate_limiter: Optional[RateLimiter] = None
) -> None:
    """Sweeps expired cache entries and rate-limit windows every `interval` seconds until cancelled."""
    while True:
        await _sleep(interval)
        removed = registry.cleanup_all()
        total = sum(removed.values())
        if rate_limiter is not None:
            total += rate_limiter.cleanup()
        if total:
            logger.info(f"Periodic cleanup removed {total} expired entries", extra={"removed": total})
        else:
            logger.debug("Periodic cleanup found nothing to remove", extra={"removed": 0})
