"""Tests for the multi-tier response cache."""

from datetime import timedelta

import pytest

from chronicle.cache.response_cache import ResponseCache
from chronicle.memory.database import Database

REQUEST = {
    "model": "a",
    "system": "You narrate.",
    "messages": [{"role": "user", "content": "m1"}],
}
OTHER_REQUEST = {**REQUEST, "messages": [{"role": "user", "content": "m2"}]}
PAYLOAD = {"content": "The gates creak open.", "model": "a"}


@pytest.fixture
def cache(db: Database, volatile, clock) -> ResponseCache:
    return ResponseCache(db, volatile=volatile, clock=clock)


@pytest.fixture
def durable_only(db: Database, clock) -> ResponseCache:
    return ResponseCache(db, volatile=None, clock=clock)


async def durable_row(db: Database, key: str):
    async with db.conn.execute(
        "SELECT hit_count, last_hit_at, expires_at FROM response_cache WHERE key_hash = ?",
        (key,),
    ) as cursor:
        return await cursor.fetchone()


@pytest.mark.asyncio
async def test_hit_and_miss(cache: ResponseCache):
    await cache.set(REQUEST, PAYLOAD, timedelta(hours=24))

    assert await cache.get(dict(REQUEST)) == PAYLOAD
    assert await cache.get(OTHER_REQUEST) is None
    await cache.drain()


@pytest.mark.asyncio
async def test_expires_with_synthetic_time(cache: ResponseCache, clock):
    await cache.set(REQUEST, PAYLOAD, timedelta(hours=24))

    clock.advance(hours=23, minutes=59)
    assert await cache.get(REQUEST) == PAYLOAD

    clock.advance(minutes=2)
    assert await cache.get(REQUEST) is None
    await cache.drain()


@pytest.mark.asyncio
async def test_default_ttl(cache: ResponseCache, clock):
    await cache.set(REQUEST, PAYLOAD)
    clock.advance(hours=25)
    assert await cache.get(REQUEST) is None


@pytest.mark.asyncio
async def test_incidental_fields_do_not_affect_lookup(cache: ResponseCache):
    await cache.set(REQUEST, PAYLOAD)
    assert await cache.get({**REQUEST, "user_id": 7, "trace_id": "abc"}) == PAYLOAD
    await cache.drain()


@pytest.mark.asyncio
async def test_fast_tier_hit_counted(cache: ResponseCache, volatile):
    await cache.set(REQUEST, PAYLOAD)
    assert f"l1:{cache.key(REQUEST)}" in volatile.data

    await cache.get(REQUEST)
    await cache.drain()

    stats = cache.stats()
    assert stats["l1"]["hits"] == 1
    assert stats["fallback"]["hits"] == 0
    assert volatile.data[f"hitcount:{cache.key(REQUEST)}"] == "1"


@pytest.mark.asyncio
async def test_hit_bookkeeping_expires_with_entry(cache: ResponseCache, volatile, clock):
    await cache.set(REQUEST, PAYLOAD, timedelta(hours=1))
    clock.advance(minutes=20)

    await cache.get(REQUEST)
    await cache.drain()

    key = cache.key(REQUEST)
    assert volatile.ttls[f"hitcount:{key}"] == 40 * 60
    assert volatile.ttls[f"lasthit:{key}"] == 40 * 60


@pytest.mark.asyncio
async def test_failed_hit_bookkeeping_still_returns_payload(cache: ResponseCache, volatile):
    """Reads work but hit counters are rejected."""

    async def rejected_incr(key: str) -> int:
        raise ConnectionError("INCR rejected")

    volatile.incr = rejected_incr
    await cache.set(REQUEST, PAYLOAD)

    assert await cache.get(REQUEST) == PAYLOAD
    await cache.drain()

    stats = cache.stats()
    assert stats["l1"]["hits"] == 1
    assert stats["errors"] == 0
    assert not any(k.startswith("hitcount:") for k in volatile.data)


@pytest.mark.asyncio
async def test_durable_only_round_trip(durable_only: ResponseCache, db: Database):
    """Without a volatile store everything goes through the durable tier."""
    await durable_only.set(REQUEST, PAYLOAD)

    assert await durable_only.get(REQUEST) == PAYLOAD
    assert await durable_only.get(OTHER_REQUEST) is None
    await durable_only.drain()

    stats = durable_only.stats()
    assert stats["volatile_enabled"] is False
    assert stats["l1"]["hits"] == 0
    assert stats["l1"]["misses"] == 0
    assert stats["fallback"]["hits"] == 1
    assert stats["fallback"]["misses"] == 1
    assert stats["errors"] == 0


@pytest.mark.asyncio
async def test_durable_hit_bookkeeping(durable_only: ResponseCache, db: Database, clock):
    await durable_only.set(REQUEST, PAYLOAD)
    hit_time = clock.advance(minutes=10)

    await durable_only.get(REQUEST)
    await durable_only.get(REQUEST)
    await durable_only.drain()

    row = await durable_row(db, durable_only.key(REQUEST))
    assert row["hit_count"] == 2
    assert row["last_hit_at"] == hit_time


@pytest.mark.asyncio
async def test_volatile_outage_falls_back(cache: ResponseCache, volatile):
    volatile.fail = True
    await cache.set(REQUEST, PAYLOAD)

    assert await cache.get(REQUEST) == PAYLOAD
    await cache.drain()

    stats = cache.stats()
    assert stats["l1"]["misses"] == 1
    assert stats["fallback"]["hits"] == 1
    assert stats["errors"] == 2  # failed fast write and failed fast read


@pytest.mark.asyncio
async def test_volatile_miss_uses_durable(cache: ResponseCache, volatile):
    await cache.set(REQUEST, PAYLOAD)
    volatile.data.clear()

    assert await cache.get(REQUEST) == PAYLOAD
    await cache.drain()

    stats = cache.stats()
    assert stats["l1"] == {"hits": 0, "misses": 1, "hit_rate": 0.0}
    assert stats["fallback"]["hits"] == 1
    assert stats["combined"]["misses"] == 0


@pytest.mark.asyncio
async def test_full_miss_counted_once(cache: ResponseCache):
    assert await cache.get(REQUEST) is None

    stats = cache.stats()
    assert stats["l1"]["misses"] == 1
    assert stats["fallback"]["misses"] == 1
    assert stats["combined"] == {"hits": 0, "misses": 1, "hit_rate": 0.0}


@pytest.mark.asyncio
async def test_durable_outage_never_raises(cache: ResponseCache, db: Database, volatile):
    await db.close()
    volatile.fail = True

    await cache.set(REQUEST, PAYLOAD)
    assert await cache.get(REQUEST) is None
    assert await cache.purge_expired() == 0
    assert await cache.invalidate("*", include_responses=True) == 0
    assert cache.stats()["errors"] > 0


@pytest.mark.asyncio
async def test_unserializable_payload_is_skipped(cache: ResponseCache):
    await cache.set(REQUEST, {"content": object()})
    assert await cache.get(REQUEST) is None
    assert cache.stats()["errors"] == 1


@pytest.mark.asyncio
async def test_static_components(cache: ResponseCache, clock):
    await cache.set_static("world_bible", "default", {"setting": "Highlands"})
    await cache.set_static("npc", "vera", {"role": "coach"}, ttl=timedelta(minutes=5))

    assert await cache.get_static("world_bible") == {"setting": "Highlands"}
    assert await cache.get_static("npc", "vera") == {"role": "coach"}
    assert await cache.get_static("npc", "moss") is None

    clock.advance(minutes=6)
    assert await cache.get_static("npc", "vera") is None
    assert await cache.get_static("world_bible") == {"setting": "Highlands"}

    stats = cache.stats()
    assert stats["l3"]["hits"] == 3
    assert stats["l3"]["misses"] == 2


@pytest.mark.asyncio
async def test_static_without_volatile_is_miss(durable_only: ResponseCache):
    await durable_only.set_static("npc", "vera", {"role": "coach"})
    assert await durable_only.get_static("npc", "vera") is None
    assert durable_only.stats()["l3"]["misses"] == 1


@pytest.mark.asyncio
async def test_invalidate_static_pattern(cache: ResponseCache, volatile):
    await cache.set_static("npc", "vera", {"role": "coach"})
    await cache.set_static("npc", "moss", {"role": "elder"})
    await cache.set_static("world_bible", "default", {"setting": "Highlands"})
    await cache.set(REQUEST, PAYLOAD)

    assert await cache.invalidate("npc:*") == 2

    assert await cache.get_static("npc", "vera") is None
    assert await cache.get_static("world_bible") is not None
    assert await cache.get(REQUEST) == PAYLOAD
    await cache.drain()


@pytest.mark.asyncio
async def test_invalidate_responses(cache: ResponseCache, db: Database):
    await cache.set(REQUEST, PAYLOAD)
    key = cache.key(REQUEST)

    # One volatile key plus one durable row
    assert await cache.invalidate(f"{key[:10]}*", include_responses=True) == 2
    assert await cache.get(REQUEST) is None
    assert await durable_row(db, key) is None


@pytest.mark.asyncio
async def test_invalidate_responses_drops_hit_bookkeeping(cache: ResponseCache, volatile):
    await cache.set(REQUEST, PAYLOAD)
    await cache.set(OTHER_REQUEST, PAYLOAD)
    await cache.get(REQUEST)
    await cache.get(OTHER_REQUEST)
    await cache.drain()
    assert any(k.startswith("hitcount:") for k in volatile.data)

    await cache.invalidate("*", include_responses=True)

    assert not any(k.startswith(("hitcount:", "lasthit:", "l1:")) for k in volatile.data)


@pytest.mark.asyncio
async def test_purge_expired(durable_only: ResponseCache, db: Database, clock):
    await durable_only.set(REQUEST, PAYLOAD, timedelta(hours=1))
    await durable_only.set(OTHER_REQUEST, PAYLOAD, timedelta(hours=48))
    clock.advance(hours=2)

    assert await durable_only.purge_expired() == 1
    assert await durable_row(db, durable_only.key(REQUEST)) is None
    assert await durable_row(db, durable_only.key(OTHER_REQUEST)) is not None


@pytest.mark.asyncio
async def test_reset_stats(durable_only: ResponseCache):
    await durable_only.get(REQUEST)
    assert durable_only.stats()["fallback"]["misses"] == 1

    durable_only.reset_stats()
    assert durable_only.stats()["fallback"]["misses"] == 0
