"""
Multi-tier response cache in front of the external generator.

Tiers:
- L1 (exact match): request hash -> generated payload. Fast volatile store
  first, durable SQLite table as fallback and source of truth.
- L3 (components): slowly changing reference fragments (world bible,
  NPC profiles) in the volatile store only; safe to recompute.

Caching must never make generation less reliable: no method here raises.
Failures are logged, counted in the statistics and treated as a miss.
"""

import json
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from chronicle.cache.keys import cache_key, component_key
from chronicle.cache.stats import CacheStatistics
from chronicle.cache.tiers import CachedValue, DurableTier, FallbackTier, VolatileTier, bounded
from chronicle.cache.volatile import VolatileStore
from chronicle.core.logging import get_logger
from chronicle.core.typing import Clock
from chronicle.memory.database import Database

logger = get_logger("cache.response")

DEFAULT_RESPONSE_TTL = timedelta(hours=24)
DEFAULT_COMPONENT_TTL = timedelta(hours=1)


class ResponseCache:
    """Exact-match (L1) and static-component (L3) caching."""

    def __init__(
        self,
        db: Database,
        volatile: VolatileStore | None = None,
        stats: CacheStatistics | None = None,
        response_ttl: timedelta = DEFAULT_RESPONSE_TTL,
        component_ttl: timedelta = DEFAULT_COMPONENT_TTL,
        volatile_timeout: float | None = 0.25,
        clock: Clock = datetime.now,
    ):
        self.volatile = volatile
        self.statistics = stats or CacheStatistics()
        self.response_ttl = response_ttl
        self.component_ttl = component_ttl
        self.volatile_timeout = volatile_timeout
        self._clock = clock
        self._l1 = FallbackTier(
            fallback=DurableTier(db),
            primary=VolatileTier(volatile, volatile_timeout) if volatile else None,
            stats=self.statistics,
        )

    @staticmethod
    def key(request: Mapping[str, Any]) -> str:
        return cache_key(request)

    # L1: exact-match responses

    async def get(self, request: Mapping[str, Any]) -> Any | None:
        """Cached payload for an identical request, or None."""
        try:
            key = cache_key(request)
        except Exception as e:
            logger.error(f"Could not hash request for lookup: {e!r}")
            self.statistics.increment("errors")
            self.statistics.increment("fallback_misses")
            return None
        return await self._l1.get(key, self._clock())

    async def set(
        self,
        request: Mapping[str, Any],
        payload: Any,
        ttl: timedelta | None = None,
    ) -> None:
        """Store a generator result. Best-effort: never raises."""
        try:
            key = cache_key(request)
            # Reject payloads the tiers could not round-trip
            json.dumps(payload)
        except Exception as e:
            logger.error(f"Could not cache response: {e!r}")
            self.statistics.increment("errors")
            return

        now = self._clock()
        value = CachedValue(
            payload=payload,
            created_at=now,
            expires_at=now + (ttl if ttl is not None else self.response_ttl),
        )
        await self._l1.set(key, value)
        logger.debug(f"Stored L1 entry {key[:12]} (expires {value.expires_at.isoformat()})")

    # L3: static components

    async def get_static(self, component_type: str, identifier: str = "default") -> Any | None:
        key = component_key(component_type, identifier)
        if self.volatile is not None:
            try:
                raw = await bounded(self.volatile.get(key), self.volatile_timeout)
                if raw is not None:
                    value = CachedValue.from_json(raw)
                    if not value.is_expired(self._clock()):
                        self.statistics.increment("l3_hits")
                        logger.debug(f"L3 cache hit: {component_type}:{identifier}")
                        return value.payload
            except Exception as e:
                logger.error(f"L3 lookup failed: {e!r}")
                self.statistics.increment("errors")

        self.statistics.increment("l3_misses")
        return None

    async def set_static(
        self,
        component_type: str,
        identifier: str,
        payload: Any,
        ttl: timedelta | None = None,
    ) -> None:
        if self.volatile is None:
            logger.debug("Volatile store disabled, L3 entry not stored")
            return

        now = self._clock()
        ttl = ttl if ttl is not None else self.component_ttl
        value = CachedValue(payload=payload, created_at=now, expires_at=now + ttl)
        try:
            await bounded(
                self.volatile.set(
                    component_key(component_type, identifier),
                    value.to_json(),
                    max(1, int(ttl.total_seconds())),
                ),
                self.volatile_timeout,
            )
        except Exception as e:
            logger.error(f"Failed to store in L3: {e!r}")
            self.statistics.increment("errors")

    # Maintenance

    async def invalidate(self, pattern: str, include_responses: bool = False) -> int:
        """Remove L3 entries whose ``<type>:<identifier>`` matches ``pattern``.

        With ``include_responses``, L1 entries whose key hash matches the
        same pattern are removed from both tiers too. Returns the count.
        """
        removed = 0
        if self.volatile is not None:
            try:
                keys = await bounded(self.volatile.keys(f"l3:{pattern}"), self.volatile_timeout)
                if keys:
                    removed += await bounded(self.volatile.delete(keys), self.volatile_timeout)
            except Exception as e:
                logger.error(f"Failed to invalidate L3 entries: {e!r}")
                self.statistics.increment("errors")

        if include_responses:
            removed += await self._l1.invalidate(pattern)

        if removed:
            logger.info(f"Invalidated {removed} cache entries matching: {pattern}")
        return removed

    async def purge_expired(self) -> int:
        """Delete expired durable rows; expired rows are already never served."""
        purged = await self._l1.purge_expired(self._clock())
        if purged:
            logger.info(f"Purged {purged} expired response cache rows")
        return purged

    async def drain(self) -> None:
        await self._l1.drain()

    def stats(self) -> dict[str, Any]:
        snapshot = self.statistics.snapshot()
        snapshot["volatile_enabled"] = self.volatile is not None
        return snapshot

    def reset_stats(self) -> None:
        self.statistics.reset()
