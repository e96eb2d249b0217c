"""
Rate Limit Tests
================

Fixed-window counters for the in-process and Redis limiters.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tasktracker.core.rate_limit import MemoryRateLimiter, RedisRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _mock_redis(count=1, ttl=-1):
    client = MagicMock()
    client.incr = AsyncMock(return_value=count)
    client.ttl = AsyncMock(return_value=ttl)
    client.expire = AsyncMock()
    return client


class TestMemoryRateLimiter:
    @pytest.mark.asyncio
    async def test_sixth_request_in_window_is_refused(self):
        limiter = MemoryRateLimiter(clock=FakeClock())

        results = [await limiter.check_rate_limit("10.0.0.1", "auth") for _ in range(6)]

        assert [r["allowed"] for r in results] == [True] * 5 + [False]
        assert results[4]["remaining"] == 0
        assert results[5]["reset_in"] == 60

    @pytest.mark.asyncio
    async def test_window_resets(self):
        clock = FakeClock()
        limiter = MemoryRateLimiter(clock=clock)
        for _ in range(6):
            await limiter.check_rate_limit("10.0.0.1", "auth")

        clock.now += 60
        result = await limiter.check_rate_limit("10.0.0.1", "auth")

        assert result["allowed"] is True
        assert result["remaining"] == 4

    @pytest.mark.asyncio
    async def test_clients_are_counted_separately(self):
        limiter = MemoryRateLimiter(clock=FakeClock())
        for _ in range(5):
            await limiter.check_rate_limit("10.0.0.1", "auth")

        other = await limiter.check_rate_limit("10.0.0.2", "auth")

        assert other["allowed"] is True


class TestRedisRateLimiter:
    @pytest.mark.asyncio
    async def test_first_hit_sets_window_expiry(self):
        client = _mock_redis(count=1, ttl=-1)
        limiter = RedisRateLimiter(client_factory=AsyncMock(return_value=client))

        result = await limiter.check_rate_limit("10.0.0.1", "auth")

        client.incr.assert_awaited_once_with("ratelimit:auth:10.0.0.1")
        client.expire.assert_awaited_once_with("ratelimit:auth:10.0.0.1", 60)
        assert result == {"allowed": True, "remaining": 4, "reset_in": 60}

    @pytest.mark.asyncio
    async def test_over_limit(self):
        client = _mock_redis(count=6, ttl=42)
        limiter = RedisRateLimiter(client_factory=AsyncMock(return_value=client))

        result = await limiter.check_rate_limit("10.0.0.1", "auth")

        client.expire.assert_not_awaited()
        assert result == {"allowed": False, "remaining": 0, "reset_in": 42}

    @pytest.mark.asyncio
    async def test_redis_failure_fails_open(self):
        client = _mock_redis()
        client.incr.side_effect = ConnectionError("Redis down")
        limiter = RedisRateLimiter(client_factory=AsyncMock(return_value=client))

        result = await limiter.check_rate_limit("10.0.0.1", "auth")

        assert result["allowed"] is True
