"""
TTL cache and rate limiter tests (fake clocks, no real sleeping).
"""

import pytest

from listsync.services.cache import TTLCache
from listsync.services.pipeline.rate_limiter import FixedDelayRateLimiter, TokenBucketRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestTTLCache:

    def test_entry_expires_after_ttl(self, clock):
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("company:domain:acme.io", [{"id": "1"}])

        clock.now = 59
        assert cache.get("company:domain:acme.io") == [{"id": "1"}]

        clock.now = 60
        assert cache.get("company:domain:acme.io") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_get_or_load_populates_on_miss_only(self, clock):
        cache = TTLCache(ttl_seconds=300, clock=clock)
        calls = []

        async def loader():
            calls.append(1)
            return "token"

        assert await cache.get_or_load("tokens:hubspot:a", loader) == "token"
        assert await cache.get_or_load("tokens:hubspot:a", loader) == "token"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_none_is_not_cached(self, clock):
        cache = TTLCache(ttl_seconds=300, clock=clock)
        calls = []

        async def loader():
            calls.append(1)
            return None

        await cache.get_or_load("k", loader)
        await cache.get_or_load("k", loader)
        assert len(calls) == 2

    def test_invalidate_prefix(self, clock):
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("company:domain:a", 1)
        cache.set("company:name:a", 2)
        cache.set("tokens:hubspot:a", 3)

        assert cache.invalidate_prefix("company:") == 2
        assert "tokens:hubspot:a" in cache
        assert "company:name:a" not in cache

    def test_per_entry_ttl(self, clock):
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.set("short", 1, ttl_seconds=5)

        clock.now = 6
        assert cache.get("short") is None

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=0)


class TestFixedDelay:

    @pytest.mark.asyncio
    async def test_sleeps_every_call(self, clock):
        limiter = FixedDelayRateLimiter(0.2, sleep=clock.sleep)

        for _ in range(3):
            await limiter.wait()

        assert clock.sleeps == [0.2, 0.2, 0.2]

    @pytest.mark.asyncio
    async def test_zero_delay_never_sleeps(self, clock):
        limiter = FixedDelayRateLimiter(0, sleep=clock.sleep)

        await limiter.wait()

        assert clock.sleeps == []


class TestTokenBucket:

    @pytest.mark.asyncio
    async def test_burst_then_throttle(self, clock):
        limiter = TokenBucketRateLimiter(rate_per_second=5, capacity=2, clock=clock, sleep=clock.sleep)

        await limiter.wait()
        await limiter.wait()
        assert clock.sleeps == []

        await limiter.wait()
        assert clock.sleeps == [pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_refills_over_time(self, clock):
        limiter = TokenBucketRateLimiter(rate_per_second=1, capacity=1, clock=clock, sleep=clock.sleep)

        await limiter.wait()
        clock.now += 1.0
        await limiter.wait()

        assert clock.sleeps == []

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            TokenBucketRateLimiter(rate_per_second=0)
