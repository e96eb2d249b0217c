"""
Rate Limiting
=============

Fixed-window request counters for throttled endpoints.

Counters are keyed by action and client identifier:
    ratelimit:{action}:{identifier}

The first hit in a window creates the counter with the window as its TTL;
later hits only increment it. Backend failures fail open.
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from fastapi import Depends, Request
from redis.asyncio import Redis

from tasktracker.config import settings
from tasktracker.core.errors import RateLimitError
from tasktracker.services.cache import get_redis

logger = logging.getLogger(__name__)

# Global limiter instance (see get_rate_limiter)
_rate_limiter: Optional["RateLimiter"] = None


class RateLimiter(ABC):
    """
    Fixed-window rate limiter.

    Default limits:
        - Authentication endpoints (login, refresh): 5 requests/minute
    """

    # Limit configurations
    LIMITS = {
        "auth": {"max_requests": 5, "window_seconds": 60},
    }

    @staticmethod
    def _get_key(identifier: str, action: str) -> str:
        """Generate rate limit key."""
        return f"ratelimit:{action}:{identifier}"

    async def check_rate_limit(self, identifier: str, action: str) -> dict:
        """
        Count one request and report whether it is within the limit.

        Returns:
            Dict with 'allowed', 'remaining', 'reset_in' keys
        """
        limits = self.LIMITS[action]
        max_req = limits["max_requests"]
        window = limits["window_seconds"]

        try:
            count, ttl = await self._hit(self._get_key(identifier, action), window)
        except Exception as exc:
            logger.warning("Rate limit check error for %s/%s: %s", action, identifier, exc)
            return {"allowed": True, "remaining": max_req, "reset_in": window}

        reset_in = ttl if ttl > 0 else window
        return {
            "allowed": count <= max_req,
            "remaining": max(max_req - count, 0),
            "reset_in": reset_in,
        }

    @abstractmethod
    async def _hit(self, key: str, window: int) -> tuple[int, int]:
        """Increment *key*, returning the new count and its remaining TTL."""


ClientFactory = Callable[[], Awaitable[Redis]]


class RedisRateLimiter(RateLimiter):
    """Counters in Redis, shared by every worker process."""

    def __init__(self, client_factory: ClientFactory = get_redis) -> None:
        self._client_factory = client_factory

    async def _hit(self, key: str, window: int) -> tuple[int, int]:
        client = await self._client_factory()
        count = await client.incr(key)
        ttl = await client.ttl(key)
        if ttl < 0:
            # New counter, or one left without an expiry by an earlier failure.
            await client.expire(key, window)
            ttl = window
        return count, ttl


class MemoryRateLimiter(RateLimiter):
    """Per-process counters for development without Redis and for tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    async def _hit(self, key: str, window: int) -> tuple[int, int]:
        now = self._clock()
        expires_at, count = self._windows.get(key, (0.0, 0))
        if expires_at <= now:
            expires_at, count = now + window, 0
        count += 1
        self._windows[key] = (expires_at, count)
        return count, max(math.ceil(expires_at - now), 1)


def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter; Redis-backed unless the cache runs in memory."""
    global _rate_limiter

    if _rate_limiter is None:
        if settings.CACHE_BACKEND == "memory":
            _rate_limiter = MemoryRateLimiter()
        else:
            _rate_limiter = RedisRateLimiter()

    return _rate_limiter


def create_rate_limit_dependency(action: str):
    """
    Factory for rate limit dependencies keyed by client IP.

    Usage:
        @router.post("/login", dependencies=[Depends(create_rate_limit_dependency("auth"))])
    """
    async def dependency(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        identifier = request.client.host if request.client else "unknown"
        result = await limiter.check_rate_limit(identifier, action)

        if not result["allowed"]:
            logger.warning("Rate limit hit for %s on %s", identifier, action)
            raise RateLimitError(retry_after=result["reset_in"])

    return dependency
