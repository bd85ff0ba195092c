"""
Single entrypoint for cached model calls.

Lookup goes through the named cache; misses run the producer once per key
(singleflight), with every attempt under its own timeout and failed
attempts retried with exponential backoff.
"""
from typing import Any, Awaitable, Callable, Optional, TypeVar

from llm_cache.caches import CacheRegistry
from llm_cache.config import RetrySettings
from llm_cache.resilience import call_with_resilience
from llm_cache.singleflight import SingleFlight

T = TypeVar("T")


class ModelGateway:
    def __init__(self, registry: CacheRegistry, retry: Optional[RetrySettings] = None):
        self.registry = registry
        self.retry = retry or RetrySettings()

    def flights(self, cache_name: str) -> SingleFlight:
        return self.registry.flights(cache_name)

    async def call(
        self,
        cache_name: str,
        key_data: Any,
        producer: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
        ttl: Optional[float] = None,
        should_retry: Optional[Callable[[BaseException], bool]] = None
    ) -> T:
        """
        Returns the cached answer for key_data or computes it with producer.
        `timeout` is per attempt and defaults to the configured model timeout.
        """
        timeout = self.retry.timeout if timeout is None else timeout

        async def resilient():
            return await call_with_resilience(
                producer,
                timeout=timeout,
                max_attempts=self.retry.max_attempts,
                initial_delay=self.retry.backoff_base,
                max_delay=self.retry.backoff_max,
                should_retry=should_retry
            )

        return await self.flights(cache_name).get_or_compute(key_data, resilient, ttl=ttl)
