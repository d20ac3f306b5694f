"""Cache tier implementations and the fallback decorator composing them."""

import asyncio
import json
import math
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from chronicle.cache.stats import CacheStatistics
from chronicle.cache.volatile import VolatileStore
from chronicle.core.logging import get_logger
from chronicle.memory.database import Database

logger = get_logger("cache.tiers")


@dataclass
class CachedValue:
    """A cached payload with its lifetime."""

    payload: Any
    created_at: datetime
    expires_at: datetime
    hit_count: int = 0
    last_hit_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_json(self) -> str:
        return json.dumps(
            {
                "payload": self.payload,
                "created_at": self.created_at.isoformat(),
                "expires_at": self.expires_at.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "CachedValue":
        data = json.loads(raw)
        return cls(
            payload=data["payload"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


def ttl_seconds(value: CachedValue, now: datetime) -> int:
    return max(1, math.ceil((value.expires_at - now).total_seconds()))


async def bounded(operation: Awaitable[Any], timeout: float | None) -> Any:
    """Await a volatile-store call, giving up after ``timeout`` seconds."""
    if timeout is None:
        return await operation
    return await asyncio.wait_for(operation, timeout)


class CacheTier(ABC):
    """One backing store for exact-match responses.

    Tier methods may raise; FallbackTier decides what a failure means.
    """

    name: str

    @abstractmethod
    async def get(self, key: str, now: datetime) -> CachedValue | None:
        """Unexpired value for ``key``, or None."""
        ...

    @abstractmethod
    async def set(self, key: str, value: CachedValue) -> None:
        ...

    @abstractmethod
    async def record_hit(self, key: str, value: CachedValue, now: datetime) -> None:
        ...

    @abstractmethod
    async def invalidate(self, pattern: str) -> int:
        ...

    async def purge_expired(self, now: datetime) -> int:
        return 0


class VolatileTier(CacheTier):
    """Fast tier: JSON envelopes in the volatile store under ``l1:<hash>``.

    Hit bookkeeping lives in ``hitcount:<hash>`` and ``lasthit:<hash>`` and
    expires with the entry it describes.
    """

    name = "volatile"

    def __init__(self, store: VolatileStore, timeout: float | None = 0.25):
        self.store = store
        self.timeout = timeout

    async def get(self, key: str, now: datetime) -> CachedValue | None:
        raw = await bounded(self.store.get(f"l1:{key}"), self.timeout)
        if raw is None:
            return None
        value = CachedValue.from_json(raw)
        # The store's TTL is wall-clock; the envelope is authoritative
        return None if value.is_expired(now) else value

    async def set(self, key: str, value: CachedValue) -> None:
        await bounded(
            self.store.set(f"l1:{key}", value.to_json(), ttl_seconds(value, value.created_at)),
            self.timeout,
        )

    async def record_hit(self, key: str, value: CachedValue, now: datetime) -> None:
        remaining = ttl_seconds(value, now)
        await bounded(self.store.incr(f"hitcount:{key}"), self.timeout)
        await bounded(self.store.expire(f"hitcount:{key}", remaining), self.timeout)
        await bounded(
            self.store.set(f"lasthit:{key}", now.isoformat(), remaining),
            self.timeout,
        )

    async def invalidate(self, pattern: str) -> int:
        """Delete matching entries and their bookkeeping; returns entries removed."""
        keys = await bounded(self.store.keys(f"l1:{pattern}"), self.timeout)
        bookkeeping = []
        for prefix in ("hitcount", "lasthit"):
            bookkeeping += await bounded(self.store.keys(f"{prefix}:{pattern}"), self.timeout)
        if bookkeeping:
            await bounded(self.store.delete(bookkeeping), self.timeout)
        return await bounded(self.store.delete(keys), self.timeout) if keys else 0


class DurableTier(CacheTier):
    """Authoritative tier: the ``response_cache`` table."""

    name = "durable"

    def __init__(self, db: Database):
        self.db = db

    async def get(self, key: str, now: datetime) -> CachedValue | None:
        async with self.db.conn.execute(
            """SELECT response_data, hit_count, last_hit_at, created_at, expires_at
               FROM response_cache
               WHERE key_hash = ? AND expires_at >= ?""",
            (key, now),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return CachedValue(
            payload=json.loads(row["response_data"]),
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            hit_count=row["hit_count"],
            last_hit_at=row["last_hit_at"],
        )

    async def set(self, key: str, value: CachedValue) -> None:
        async with self.db.transaction() as conn:
            await conn.execute(
                """INSERT INTO response_cache (key_hash, response_data, created_at, expires_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(key_hash) DO UPDATE SET
                       response_data = excluded.response_data,
                       created_at = excluded.created_at,
                       expires_at = excluded.expires_at""",
                (key, json.dumps(value.payload), value.created_at, value.expires_at),
            )

    async def record_hit(self, key: str, value: CachedValue, now: datetime) -> None:
        async with self.db.transaction() as conn:
            await conn.execute(
                """UPDATE response_cache
                   SET hit_count = hit_count + 1, last_hit_at = ?
                   WHERE key_hash = ?""",
                (now, key),
            )

    async def invalidate(self, pattern: str) -> int:
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM response_cache WHERE key_hash GLOB ?", (pattern,)
            )
            return cursor.rowcount

    async def purge_expired(self, now: datetime) -> int:
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM response_cache WHERE expires_at < ?", (now,)
            )
            return cursor.rowcount


class FallbackTier:
    """Try the fast tier, else the durable one; never raise.

    Each tier counts only its own lookups: ``l1_*`` for the fast tier and
    ``fallback_*`` for the durable one. A request served by neither is one
    ``fallback_misses``. Failures are logged and counted in ``stats.errors``
    and read as a miss of the failing tier (or a no-op for writes). Hit
    bookkeeping runs as detached tasks so the read path never waits for it.
    """

    def __init__(
        self,
        fallback: CacheTier,
        primary: CacheTier | None = None,
        stats: CacheStatistics | None = None,
    ):
        self.primary = primary
        self.fallback = fallback
        self.stats = stats or CacheStatistics()
        self._background: set[asyncio.Task] = set()

    async def get(self, key: str, now: datetime) -> Any | None:
        if self.primary is not None:
            try:
                value = await self.primary.get(key, now)
            except Exception as e:
                logger.error(f"L1 {self.primary.name} lookup failed: {e!r}")
                self.stats.increment("errors")
                self.stats.increment("l1_misses")
            else:
                if value is not None:
                    self.stats.increment("l1_hits")
                    logger.debug(f"L1 cache hit ({self.primary.name})")
                    self._spawn_hit(self.primary, key, value, now)
                    return value.payload
                self.stats.increment("l1_misses")

        try:
            value = await self.fallback.get(key, now)
        except Exception as e:
            logger.error(f"L1 {self.fallback.name} lookup failed: {e!r}")
            self.stats.increment("errors")
            self.stats.increment("fallback_misses")
            return None

        if value is None:
            self.stats.increment("fallback_misses")
            return None

        self.stats.increment("fallback_hits")
        logger.debug(f"L1 cache hit ({self.fallback.name} fallback)")
        self._spawn_hit(self.fallback, key, value, now)
        return value.payload

    async def set(self, key: str, value: CachedValue) -> None:
        if self.primary is not None:
            try:
                await self.primary.set(key, value)
            except Exception as e:
                logger.error(f"Failed to store in {self.primary.name} tier: {e!r}")
                self.stats.increment("errors")

        try:
            await self.fallback.set(key, value)
        except Exception as e:
            logger.error(f"Failed to store in {self.fallback.name} tier: {e!r}")
            self.stats.increment("errors")

    async def invalidate(self, pattern: str) -> int:
        removed = 0
        for tier in (self.primary, self.fallback):
            if tier is None:
                continue
            try:
                removed += await tier.invalidate(pattern)
            except Exception as e:
                logger.error(f"Failed to invalidate {tier.name} tier: {e!r}")
                self.stats.increment("errors")
        return removed

    async def purge_expired(self, now: datetime) -> int:
        try:
            return await self.fallback.purge_expired(now)
        except Exception as e:
            logger.error(f"Failed to purge expired entries: {e!r}")
            self.stats.increment("errors")
            return 0

    async def drain(self) -> None:
        """Wait for pending hit bookkeeping."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _spawn_hit(self, tier: CacheTier, key: str, value: CachedValue, now: datetime) -> None:
        task = asyncio.create_task(self._record_hit(tier, key, value, now))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _record_hit(
        self, tier: CacheTier, key: str, value: CachedValue, now: datetime
    ) -> None:
        try:
            await tier.record_hit(key, value, now)
        except Exception as e:
            # Non-critical: the read already succeeded
            logger.warning(f"Failed to update hit count in {tier.name} tier: {e!r}")
