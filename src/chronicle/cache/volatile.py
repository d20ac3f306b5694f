"""Volatile key-value store used as the fast cache tier."""

from abc import ABC, abstractmethod

import redis.asyncio as redis
from redis.exceptions import RedisError

from chronicle.core.logging import get_logger

logger = get_logger("cache.volatile")


class VolatileStore(ABC):
    """Minimal get/set-with-TTL interface the cache needs from a fast store.

    Implementations may raise on any call; the cache treats every failure
    as a miss.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def keys(self, pattern: str) -> list[str]:
        """Keys matching a glob-style pattern."""
        ...

    @abstractmethod
    async def delete(self, keys: list[str]) -> int:
        ...

    @abstractmethod
    async def incr(self, key: str) -> int:
        ...

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> None:
        ...

    async def close(self) -> None:
        return None


class RedisVolatileStore(VolatileStore):
    """Redis-backed volatile store with short socket timeouts."""

    def __init__(self, url: str, timeout: float = 0.25):
        self.url = url
        self._client: redis.Redis = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
        )
        logger.info(f"Initialized Redis client: {url}")

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._client.set(key, value, ex=max(1, ttl_seconds))

    async def keys(self, pattern: str) -> list[str]:
        return [key async for key in self._client.scan_iter(match=pattern)]

    async def delete(self, keys: list[str]) -> int:
        if not keys:
            return 0
        return await self._client.delete(*keys)

    async def incr(self, key: str) -> int:
        return await self._client.incr(key)

    async def expire(self, key: str, ttl_seconds: int) -> None:
        await self._client.expire(key, max(1, ttl_seconds))

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
