"""
Async request spacer for the market data API.
The free tier allows a handful of calls per minute, so calls are spaced by a
fixed minimum delay rather than metered with a burst bucket.
"""

import asyncio
import time
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class RateLimitStats:
    """Rate limiter statistics for monitoring."""
    calls: int
    total_wait_s: float
    last_call: float
    min_interval_s: float


class RequestSpacer:
    """
    Enforces a minimum interval between consecutive outbound calls.

    Concurrent callers queue on a lock, so at most one call is released per
    interval.
    """

    def __init__(
        self,
        min_interval_s: float,
        name: str = "spacer",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.min_interval_s = min_interval_s
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._last_call = 0.0
        self._has_called = False
        self.calls = 0
        self.total_wait_s = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> float:
        """Wait until the next call is allowed. Returns seconds waited."""
        async with self._lock:
            waited = 0.0
            if self._has_called:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval_s:
                    waited = self.min_interval_s - elapsed
                    logger.debug(f"{self.name}: spacing call by {waited:.2f}s")
                    await self._sleep(waited)

            self._last_call = self._clock()
            self._has_called = True
            self.calls += 1
            self.total_wait_s += waited
            return waited

    def get_stats(self) -> RateLimitStats:
        """Get current rate limiter statistics."""
        return RateLimitStats(
            calls=self.calls,
            total_wait_s=self.total_wait_s,
            last_call=self._last_call,
            min_interval_s=self.min_interval_s
        )

    def reset_stats(self):
        """Reset statistics counters."""
        self.calls = 0
        self.total_wait_s = 0.0
