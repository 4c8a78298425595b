"""
Key/value storage backends for the content-addressed caches.

Both backends expose the same tiny surface the caches need:
    get(key) -> str | None
    setex(key, ttl_seconds, value)
    ping() / close()

RedisStore is the production backend.  MemoryStore keeps entries in-process
with the same expire-from-write-time semantics; it is used when no Redis URL
is configured.
"""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import redis.asyncio as aioredis
from loguru import logger
from redis.exceptions import RedisError

from ragchat.exceptions import CacheError


class KeyValueStore(ABC):
    """Abstract string store with per-key TTL."""

    name: str

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when absent/expired."""

    @abstractmethod
    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        """Store value under key, expiring ttl_seconds after this write."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the backend is reachable."""

    async def close(self) -> None:
        """Release connections. No-op by default."""


class RedisStore(KeyValueStore):
    """redis.asyncio client; every Redis/OS failure surfaces as CacheError."""

    name = "redis"

    def __init__(self, redis_url: str, client: Optional[aioredis.Redis] = None) -> None:
        self.redis_url = redis_url
        self._client = client or aioredis.from_url(redis_url, decode_responses=True)
        logger.info(f"[RedisStore] Initialised | url={redis_url}")

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._client.get(key)
        except (RedisError, OSError) as exc:
            raise CacheError("Redis GET failed", {"key": key, "error": str(exc)}) from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        try:
            await self._client.setex(key, ttl_seconds, value)
        except (RedisError, OSError) as exc:
            raise CacheError("Redis SETEX failed", {"key": key, "error": str(exc)}) from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as exc:
            raise CacheError("Redis connection failed", {"error": str(exc)}) from exc

    async def close(self) -> None:
        try:
            await self._client.aclose()
            logger.info("[RedisStore] Client closed")
        except (RedisError, OSError) as exc:
            raise CacheError("Failed to close Redis client", {"error": str(exc)}) from exc


class MemoryStore(KeyValueStore):
    """
    In-process dict store.

    Expired entries are dropped lazily on read.  `clock` is injectable so
    TTL behaviour can be exercised without sleeping.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        if ttl_seconds <= 0:
            raise CacheError("TTL must be positive", {"key": key, "ttl": ttl_seconds})
        self._data[key] = (self._clock() + ttl_seconds, value)

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for expires_at, _ in self._data.values() if now < expires_at)


def create_store(redis_url: str) -> KeyValueStore:
    """Redis when a URL is configured, otherwise the in-process store."""
    if redis_url:
        return RedisStore(redis_url)
    logger.info("[Cache] No REDIS_URL configured; using in-process MemoryStore")
    return MemoryStore()
