"""
Redis Cache Service
===================

Redis connection management plus the tagged read-through cache used for
task listings.

Key naming convention:
    tasks:user:{owner_id}:{operation}:{sorted, urlencoded params}
    tasks:user:{owner_id}   -> canonical view (every task, no filter)

Tags:
    tasks:user:{owner_id}   -> shared by every cached view of that owner's tasks

The cache is a disposable projection of the database. Every public method
swallows backend errors (logging a warning) so a Redis outage degrades to
direct database reads instead of failing the request.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional
from urllib.parse import urlencode

import redis.asyncio as redis
from redis.asyncio import Redis

from tasktracker.config import settings

logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client: Optional[Redis] = None

# Global task cache instance (see get_task_cache)
_task_cache: Optional["TaskCache"] = None

# Every cached task view lives for 10 minutes
TASK_CACHE_TTL = 600

Compute = Callable[[], Awaitable[Any]]


async def init_redis() -> Redis:
    """
    Initialize Redis connection pool and pre-warm a connection.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
            socket_keepalive=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        # Pre-warm: force a real connection so the first request
        # doesn't pay the TCP handshake cost.
        await _redis_client.ping()
        logger.info("Redis connection established")

    return _redis_client


async def get_redis() -> Redis:
    """Get Redis client, initializing if necessary."""
    if _redis_client is None:
        return await init_redis()

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")


# =============================================================================
# Cache Key Builders
# =============================================================================

def _param_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class CacheKeys:
    """Cache key builders for consistent naming."""

    # The unfiltered listing is the owner's canonical view and is stored at
    # the tag key itself.
    CANONICAL_OPERATION = "all"

    @staticmethod
    def user_tag(owner_id: Any) -> str:
        """Tag shared by every cache entry derived from one owner's tasks."""
        return f"tasks:user:{owner_id}"

    @staticmethod
    def user_tasks(
        owner_id: Any,
        operation: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Key for one view of an owner's tasks.

        Parameters are sorted by name before encoding so equivalent queries
        map to the same key regardless of insertion order. ``None`` values
        are dropped. The canonical view maps to the tag key.
        """
        if operation == CacheKeys.CANONICAL_OPERATION and not params:
            return CacheKeys.user_tag(owner_id)
        items = sorted(
            (str(k), _param_value(v))
            for k, v in (params or {}).items()
            if v is not None
        )
        return f"tasks:user:{owner_id}:{operation}:{urlencode(items)}"

    @staticmethod
    def is_user_tag(key: str) -> bool:
        prefix, _, owner_id = key.rpartition(":")
        return prefix == "tasks:user" and bool(owner_id)

    @staticmethod
    def tag_index(tag: str) -> str:
        """Redis Set holding every key stored under *tag*."""
        return f"cache:tag:{tag}"


# =============================================================================
# Tagged cache interface
# =============================================================================

class TaskCache(ABC):
    """
    Read-through cache with tag-based invalidation.

    Values are stored JSON-encoded, so what callers get back on a hit has the
    same shape as what they get on a miss and never aliases cached state.
    """

    supports_tags: bool = True

    async def get_or_compute(
        self,
        key: str,
        tags: Iterable[str],
        ttl: int,
        compute: Compute,
    ) -> Any:
        """
        Return the cached value for *key*, or compute, store and return it.

        Cache errors are logged and treated as a miss. Errors raised by
        *compute* (the database) propagate.
        """
        raw: Optional[str] = None
        try:
            raw = await self._get(key)
        except Exception as exc:
            logger.warning("task cache read error for %s: %s", key, exc)

        if raw is not None:
            try:
                return json.loads(raw)
            except ValueError:
                logger.warning("task cache entry %s is corrupt, recomputing", key)

        payload = json.dumps(await compute(), default=str)

        try:
            await self._set(key, payload, list(tags), ttl)
        except Exception as exc:
            logger.warning("task cache write error for %s: %s", key, exc)

        return json.loads(payload)

    async def invalidate(self, tags: Iterable[str]) -> bool:
        """
        Drop every entry tagged with any of *tags*.

        Returns ``False`` when the backend failed; the stale entries then
        expire with their TTL.
        """
        tags = list(tags)
        if not tags:
            return True
        try:
            await self._invalidate(tags)
            return True
        except Exception as exc:
            logger.warning("task cache invalidate error for %s: %s", tags, exc)
            return False

    @abstractmethod
    async def _get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def _set(self, key: str, payload: str, tags: list[str], ttl: int) -> None: ...

    @abstractmethod
    async def _invalidate(self, tags: list[str]) -> None: ...


ClientFactory = Callable[[], Awaitable[Redis]]

# KEYS: tag index sets. Deletes every member key, then the index itself.
INVALIDATE_TAGS_SCRIPT = """
local removed = 0
for _, index in ipairs(KEYS) do
    for _, key in ipairs(redis.call('SMEMBERS', index)) do
        removed = removed + redis.call('DEL', key)
    end
    redis.call('DEL', index)
end
return removed
"""


class RedisTaggedCache(TaskCache):
    """
    Redis cache with a reverse index per tag.

    Each entry is a plain string key with a TTL. Every tag keeps a Redis Set
    of the keys stored under it (``cache:tag:{tag}``); the set and the entry
    are written in one MULTI/EXEC so an entry is never stored untracked.
    """

    def __init__(self, client_factory: ClientFactory = get_redis) -> None:
        self._client_factory = client_factory

    async def _get(self, key: str) -> Optional[str]:
        client = await self._client_factory()
        return await client.get(key)

    async def _set(self, key: str, payload: str, tags: list[str], ttl: int) -> None:
        client = await self._client_factory()
        pipe = client.pipeline(transaction=True)
        pipe.setex(key, ttl, payload)
        for tag in tags:
            index = CacheKeys.tag_index(tag)
            pipe.sadd(index, key)
            # The index is refreshed on every write so it outlives its members.
            pipe.expire(index, ttl)
        await pipe.execute()

    async def _invalidate(self, tags: list[str]) -> None:
        client = await self._client_factory()
        indexes = [CacheKeys.tag_index(tag) for tag in tags]
        # Members are read and deleted atomically.
        await client.eval(INVALIDATE_TAGS_SCRIPT, len(indexes), *indexes)


class RedisSingleKeyCache(TaskCache):
    """
    Degraded Redis cache for stores without set support.

    No tag index is kept. Only the canonical view of each owner (the key
    equal to its tag) is cached; every other key is a permanent miss and
    is computed from the database. ``invalidate`` deletes the tag keys, so
    a write is visible to the next read just as in the tagged mode.
    """

    supports_tags = False

    def __init__(self, client_factory: ClientFactory = get_redis) -> None:
        self._client_factory = client_factory

    async def _get(self, key: str) -> Optional[str]:
        if not CacheKeys.is_user_tag(key):
            return None
        client = await self._client_factory()
        return await client.get(key)

    async def _set(self, key: str, payload: str, tags: list[str], ttl: int) -> None:
        if key not in tags:
            return
        client = await self._client_factory()
        await client.setex(key, ttl, payload)

    async def _invalidate(self, tags: list[str]) -> None:
        client = await self._client_factory()
        await client.delete(*tags)


class MemoryTaggedCache(TaskCache):
    """
    In-process tagged cache.

    Used for local development without Redis and in tests. Not shared
    between worker processes.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, str]] = {}
        self._tags: dict[str, set[str]] = {}

    async def _get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return payload

    async def _set(self, key: str, payload: str, tags: list[str], ttl: int) -> None:
        self._entries[key] = (self._clock() + ttl, payload)
        for tag in tags:
            self._tags.setdefault(tag, set()).add(key)

    async def _invalidate(self, tags: list[str]) -> None:
        for tag in tags:
            for key in self._tags.pop(tag, set()):
                self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry[0] > self._clock()


def build_task_cache(backend: str) -> TaskCache:
    """Instantiate the cache implementation named by *backend*."""
    if backend == "redis":
        return RedisTaggedCache()
    if backend == "redis-single-key":
        return RedisSingleKeyCache()
    if backend == "memory":
        return MemoryTaggedCache()
    raise ValueError(f"Unknown cache backend: {backend}")


def get_task_cache() -> TaskCache:
    """Process-wide task cache selected by ``settings.CACHE_BACKEND``."""
    global _task_cache

    if _task_cache is None:
        _task_cache = build_task_cache(settings.CACHE_BACKEND)
        if not _task_cache.supports_tags:
            logger.warning(
                "Task cache running without tag support; "
                "only unfiltered task listings will be cached"
            )

    return _task_cache
