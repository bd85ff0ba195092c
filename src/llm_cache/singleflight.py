"""
Compute-once wrapper around LLMCache.

Concurrent get_or_compute calls for the same key share a single producer
run. The pending registry lives beside the cache, not inside it: entries
exist only while a producer is running.

Each flight carries a generation number. A flight that was unregistered
before its producer finished (timeout, forget) no longer matches the
registry, so its late result is handed to its own waiters but never
written to the cache.
"""
import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TypeVar

from llm_cache.cache import LLMCache
from llm_cache.errors import TimeoutExceeded
from llm_cache.logging_config import get_logger

logger = get_logger("llm_cache.singleflight")

T = TypeVar("T")


@dataclass
class _Flight:
    generation: int
    future: "asyncio.Future[Any]"
    task: Optional["asyncio.Task[None]"] = None
    timer: Optional[asyncio.TimerHandle] = None
    started_at: float = field(default_factory=time.perf_counter)


class SingleFlight:
    def __init__(self, cache: LLMCache):
        self.cache = cache
        self._pending: Dict[str, _Flight] = {}
        self._generations = itertools.count(1)
        # Abandoned producer tasks must stay referenced until they finish
        self._tasks: Set["asyncio.Task[None]"] = set()

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    def is_pending(self, key_data: Any) -> bool:
        return self.cache.key_for(key_data) in self._pending

    async def get_or_compute(
        self,
        key_data: Any,
        producer: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
        timeout: Optional[float] = None
    ) -> T:
        # Key first: bad input fails before any state is touched
        key = self.cache.key_for(key_data)

        cached = self.cache.get(key_data)
        if cached is not None:
            return cached

        flight = self._pending.get(key)
        if flight is None:
            flight = self._start(key, key_data, producer, ttl, timeout)
        else:
            logger.debug(
                "Joining in-flight computation",
                extra={"cache_name": self.cache.name, "cache_key": key, "in_flight": self.in_flight}
            )

        # Shielded so one cancelled waiter doesn't cancel everyone else
        return await asyncio.shield(flight.future)

    def forget(self, key_data: Any) -> bool:
        """
        Unregisters the pending flight for key_data, if any.
        Its waiters still get the result; the cache does not.
        """
        key = self.cache.key_for(key_data)
        flight = self._pending.pop(key, None)
        if flight is None:
            return False
        if flight.timer is not None:
            flight.timer.cancel()
        return True

    def _start(
        self,
        key: str,
        key_data: Any,
        producer: Callable[[], Awaitable[T]],
        ttl: Optional[float],
        timeout: Optional[float]
    ) -> _Flight:
        loop = asyncio.get_running_loop()
        flight = _Flight(generation=next(self._generations), future=loop.create_future())
        self._pending[key] = flight

        flight.task = loop.create_task(self._run(key, key_data, producer, ttl, flight))
        self._tasks.add(flight.task)
        flight.task.add_done_callback(self._tasks.discard)
        if timeout is not None:
            flight.timer = loop.call_later(timeout, self._expire, key, flight, timeout)
        return flight

    def _is_current(self, key: str, flight: _Flight) -> bool:
        current = self._pending.get(key)
        return current is not None and current.generation == flight.generation

    def _settle(self, key: str, flight: _Flight) -> bool:
        """Unregisters flight if it is still current. Returns whether it was."""
        if flight.timer is not None:
            flight.timer.cancel()
        if not self._is_current(key, flight):
            return False
        del self._pending[key]
        return True

    async def _run(
        self,
        key: str,
        key_data: Any,
        producer: Callable[[], Awaitable[T]],
        ttl: Optional[float],
        flight: _Flight
    ) -> None:
        extra = {"cache_name": self.cache.name, "cache_key": key}
        try:
            value = await producer()
        except asyncio.CancelledError:
            self._settle(key, flight)
            if not flight.future.done():
                flight.future.cancel()
            raise
        except Exception as e:
            self._settle(key, flight)
            logger.warning(
                f"Computation failed: {e}",
                extra={**extra, "error_type": type(e).__name__}
            )
            if not flight.future.done():
                flight.future.set_exception(e)
            return

        latency_ms = (time.perf_counter() - flight.started_at) * 1000
        if self._settle(key, flight):
            self.cache.set(key_data, value, ttl)
            logger.info("Computed and cached", extra={**extra, "latency_ms": latency_ms})
        else:
            logger.warning(
                "Discarding result of abandoned computation",
                extra={**extra, "latency_ms": latency_ms, "error_type": "stale_generation"}
            )

        if not flight.future.done():
            flight.future.set_result(value)

    def _expire(self, key: str, flight: _Flight, timeout: float) -> None:
        if not self._is_current(key, flight):
            return
        del self._pending[key]
        logger.warning(
            f"Computation timed out after {timeout}s",
            extra={"cache_name": self.cache.name, "cache_key": key, "error_type": "timeout"}
        )
        if not flight.future.done():
            flight.future.set_exception(TimeoutExceeded("Computation timed out", timeout=timeout))


async def get_or_compute(
    flights: SingleFlight,
    key_data: Any,
    producer: Callable[[], Awaitable[T]],
    ttl: Optional[float] = None,
    timeout: Optional[float] = None
) -> T:
    """
    Returns the value cached in flights.cache for key_data, computing it once.

    Pass the SingleFlight owned by the CacheRegistry (registry.flights(name))
    so every caller of a cache shares one in-flight registry.
    """
    return await flights.get_or_compute(key_data, producer, ttl=ttl, timeout=timeout)
