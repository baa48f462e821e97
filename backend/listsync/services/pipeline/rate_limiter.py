"""
Rate limiters for calls against external APIs.

The batch runner awaits `wait()` after every row, whatever the outcome.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    async def wait(self) -> None:
        ...


class FixedDelayRateLimiter:
    """Blocking pause of a fixed length on every call."""

    def __init__(
        self,
        delay_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def wait(self) -> None:
        if self.delay_seconds:
            await self._sleep(self.delay_seconds)


class TokenBucketRateLimiter:
    """
    Token bucket: `capacity` calls may pass at once, refilled at
    `rate_per_second`. `wait()` blocks until a token is available.
    """

    def __init__(
        self,
        rate_per_second: float,
        capacity: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be > 0")
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.rate_per_second = rate_per_second
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_second)
        self._updated_at = now

    async def wait(self) -> None:
        async with self._lock:
            self._refill()
            if self._tokens < 1:
                shortfall = (1 - self._tokens) / self.rate_per_second
                logger.debug(f"Rate limit reached, waiting {shortfall:.3f}s")
                await self._sleep(shortfall)
                self._refill()
                # The clock may not have advanced (e.g. a fake sleep)
                self._tokens = max(self._tokens, 1.0)
            self._tokens -= 1
