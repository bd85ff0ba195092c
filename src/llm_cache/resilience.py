"""
Timeout and retry wrappers for calls to the generative model.

Composition used by callers: every retry attempt runs inside its own
timeout window, i.e. with_retry(lambda: with_timeout(producer(), t)).
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    retry_if_exception_type,
    before_sleep_log
)

from llm_cache.errors import TimeoutExceeded
from llm_cache.logging_config import get_logger

logger = get_logger("llm_cache.resilience")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY_S = 1.0
DEFAULT_MAX_DELAY_S = 10.0


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _discard_outcome(task: "asyncio.Future[Any]") -> None:
    # Late outcome of an abandoned call; retrieve it so asyncio doesn't warn
    if task.cancelled():
        return
    exc = task.exception()
    logger.debug(
        "Discarding late result of abandoned call",
        extra={"error_type": type(exc).__name__ if exc else None}
    )


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    message: str = "Operation timed out"
) -> T:
    """
    Races awaitable against a deadline of `timeout` seconds.

    On expiry raises TimeoutExceeded. The underlying call is abandoned rather
    than cancelled: it may still finish in the background, and whatever it
    produces is dropped.
    """
    task = asyncio.ensure_future(awaitable)
    if timeout is None:
        return await task

    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except TimeoutExceeded:
        raise
    except asyncio.TimeoutError as e:
        if task.done():
            # Settled on the deadline itself; its own outcome wins
            return task.result()
        task.add_done_callback(_discard_outcome)
        logger.warning(
            f"{message} after {timeout}s",
            extra={"error_type": "timeout", "latency_ms": timeout * 1000}
        )
        raise TimeoutExceeded(message, timeout=timeout) from e
    except asyncio.CancelledError:
        task.cancel()
        raise


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay: float = DEFAULT_INITIAL_DELAY_S,
    max_delay: float = DEFAULT_MAX_DELAY_S,
    should_retry: Optional[Callable[[BaseException], bool]] = None
) -> T:
    """
    Calls fn up to max_attempts times.

    Waits initial_delay * 2**(attempt - 1) seconds (capped at max_delay)
    after each failed attempt. Every Exception is retried unless
    should_retry says otherwise. The last failure is re-raised as is.
    """
    if should_retry is None:
        retry = retry_if_exception_type(Exception)
    else:
        retry = retry_if_exception(should_retry)

    retryer = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=initial_delay, max=max_delay),
        retry=retry,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=_sleep,
        reraise=True
    )

    async for attempt in retryer:
        with attempt:
            result = await fn()
    return result


async def call_with_resilience(
    producer: Callable[[], Awaitable[T]],
    timeout: Optional[float],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_delay: float = DEFAULT_INITIAL_DELAY_S,
    max_delay: float = DEFAULT_MAX_DELAY_S,
    should_retry: Optional[Callable[[BaseException], bool]] = None
) -> T:
    """Runs producer with a fresh timeout per attempt and exponential retries."""
    return await with_retry(
        lambda: with_timeout(producer(), timeout),
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        should_retry=should_retry
    )
