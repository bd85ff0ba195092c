"""
Fixed-window request limiter keyed by caller identifier (IP, user id).
In-process only, like the response caches it sits in front of.
"""
import math
import time
from dataclasses import dataclass
from typing import Dict


@dataclass
class _Window:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int
    reset: float  # time.monotonic() at which the window closes

    @property
    def retry_after(self) -> int:
        return max(0, math.ceil(self.reset - time.monotonic()))

    @property
    def reset_epoch(self) -> int:
        """Unix time (seconds) at which the window closes."""
        return math.ceil(time.time() + (self.reset - time.monotonic()))


class RateLimiter:
    def __init__(self, limit: int = 10, interval: float = 60.0):
        self.limit = int(limit)
        self.interval = float(interval)
        self._windows: Dict[str, _Window] = {}

    def hit(self, identifier: str) -> RateLimitResult:
        now = time.monotonic()
        window = self._windows.get(identifier)

        if window is None or now > window.reset_at:
            # First request or expired window
            window = _Window(count=1, reset_at=now + self.interval)
            self._windows[identifier] = window
            return RateLimitResult(success=True, remaining=self.limit - 1, reset=window.reset_at)

        window.count += 1
        if window.count > self.limit:
            return RateLimitResult(success=False, remaining=0, reset=window.reset_at)

        return RateLimitResult(success=True, remaining=self.limit - window.count, reset=window.reset_at)

    def cleanup(self) -> int:
        now = time.monotonic()
        expired = [ident for ident, window in self._windows.items() if now > window.reset_at]
        for ident in expired:
            del self._windows[ident]
        return len(expired)

    def reset(self) -> None:
        self._windows.clear()
