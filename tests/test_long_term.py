"""Tests for long-term fact memory."""

import pytest

from chronicle.memory.database import Database
from chronicle.memory.long_term import LongTermMemoryStore, clamp_importance, extract_keywords


@pytest.fixture
def facts(db: Database, clock) -> LongTermMemoryStore:
    return LongTermMemoryStore(db, clock=clock)


@pytest.mark.asyncio
async def test_remember_and_reinforce_clamps(facts: LongTermMemoryStore):
    """Reinforcement adds, then saturates at 1.0."""
    await facts.remember(7, "X is the mentor", 0.9)

    assert await facts.reinforce(7, "X is the mentor", 0.05) == 0.95
    assert await facts.reinforce(7, "X is the mentor", 0.5) == 1.0


@pytest.mark.asyncio
async def test_repeated_reinforcement_converges_to_one(facts: LongTermMemoryStore):
    await facts.remember(1, "The river remembers", 0.1)
    for _ in range(20):
        importance = await facts.reinforce(1, "The river remembers", 0.3)
        assert importance <= 1.0
    assert importance == 1.0


@pytest.mark.asyncio
async def test_reinforce_unknown_fact_creates_it(facts: LongTermMemoryStore):
    assert await facts.reinforce(1, "New rumor", 0.2) == 0.2
    assert (await facts.get(1, "New rumor")).importance_score == 0.2


@pytest.mark.asyncio
async def test_negative_reinforcement_floors_at_zero(facts: LongTermMemoryStore):
    await facts.remember(1, "Fading memory", 0.1)
    assert await facts.reinforce(1, "Fading memory", -0.5) == 0.0


@pytest.mark.asyncio
async def test_remember_keeps_existing_importance(facts: LongTermMemoryStore):
    await facts.remember(1, "Vera trains at dawn", 0.6)
    fact = await facts.remember(1, "Vera trains at dawn", 0.9)
    assert fact.importance_score == 0.6


@pytest.mark.asyncio
async def test_remember_overwrite_takes_max(facts: LongTermMemoryStore):
    await facts.remember(1, "Vera trains at dawn", 0.6)
    assert (await facts.remember(1, "Vera trains at dawn", 0.9, overwrite=True)).importance_score == 0.9
    assert (await facts.remember(1, "Vera trains at dawn", 0.3, overwrite=True)).importance_score == 0.9


@pytest.mark.asyncio
async def test_remember_clamps_out_of_range(facts: LongTermMemoryStore):
    assert (await facts.remember(1, "Too important", 1.7)).importance_score == 1.0


@pytest.mark.asyncio
async def test_top_facts_order_and_threshold(facts: LongTermMemoryStore, clock):
    await facts.remember(1, "low", 0.2)
    await facts.remember(1, "high", 0.9)
    clock.advance(minutes=1)
    await facts.remember(1, "also high, newer", 0.9)
    await facts.remember(2, "other entity", 1.0)

    top = await facts.top_facts(1, limit=10)
    assert [f.content_text for f in top] == ["also high, newer", "high", "low"]

    important = await facts.top_facts(1, limit=10, min_importance=0.7)
    assert [f.content_text for f in important] == ["also high, newer", "high"]

    assert len(await facts.top_facts(1, limit=1)) == 1


@pytest.mark.asyncio
async def test_top_facts_touches_last_accessed(facts: LongTermMemoryStore, clock):
    await facts.remember(1, "Touched fact", 0.8)
    later = clock.advance(hours=3)

    await facts.top_facts(1)
    assert (await facts.get(1, "Touched fact")).last_accessed_at == later


@pytest.mark.asyncio
async def test_search_finds_keyword_matches(facts: LongTermMemoryStore):
    await facts.remember(1, "Elder Moss is the mentor", 0.9)
    await facts.remember(1, "The smith forges blades", 0.5)
    await facts.remember(2, "Another mentor elsewhere", 0.9)

    results = await facts.search(1, "who is my mentor?")
    assert [f.content_text for f in results] == ["Elder Moss is the mentor"]


@pytest.mark.asyncio
async def test_search_is_deterministic(facts: LongTermMemoryStore):
    for text in ("Mountain pass is guarded", "The mountain shrine", "Shrine keeper Ilsa"):
        await facts.remember(1, text, 0.5)

    first = [f.id for f in await facts.search(1, "mountain shrine")]
    second = [f.id for f in await facts.search(1, "mountain shrine")]
    assert first == second
    assert len(first) == 3


@pytest.mark.asyncio
async def test_search_no_match_or_empty_query(facts: LongTermMemoryStore):
    await facts.remember(1, "Elder Moss is the mentor", 0.9)
    assert await facts.search(1, "dragons") == []
    assert await facts.search(1, "") == []
    assert await facts.search(1, "a of") == []


@pytest.mark.asyncio
async def test_search_without_fts(db: Database, facts: LongTermMemoryStore):
    """LIKE fallback ranks by keyword overlap, then importance."""
    db.fts_enabled = False
    await facts.remember(1, "The mountain shrine", 0.4)
    await facts.remember(1, "Mountain pass", 0.9)
    await facts.remember(1, "River crossing", 0.9)

    results = await facts.search(1, "mountain shrine")
    assert [f.content_text for f in results] == ["The mountain shrine", "Mountain pass"]


@pytest.mark.asyncio
async def test_search_with_embedder_reranks(db: Database, clock):
    class KeywordEmbedder:
        async def embed(self, texts):
            return [[1.0 if "shrine" in t.lower() else 0.0, 1.0] for t in texts]

    facts = LongTermMemoryStore(db, embedder=KeywordEmbedder(), clock=clock)
    await facts.remember(1, "Mountain pass", 0.9)
    await facts.remember(1, "Quiet shrine on the mountain", 0.1)

    results = await facts.search(1, "shrine mountain", limit=1)
    assert [f.content_text for f in results] == ["Quiet shrine on the mountain"]


@pytest.mark.asyncio
async def test_embedder_failure_keeps_keyword_order(db: Database, clock):
    class BrokenEmbedder:
        async def embed(self, texts):
            raise RuntimeError("embedding service down")

    facts = LongTermMemoryStore(db, embedder=BrokenEmbedder(), clock=clock)
    await facts.remember(1, "Mountain pass", 0.9)

    results = await facts.search(1, "mountain")
    assert [f.content_text for f in results] == ["Mountain pass"]


def test_clamp_importance():
    assert clamp_importance(0.9 + 0.05) == 0.95
    assert clamp_importance(-1) == 0.0
    assert clamp_importance(3) == 1.0


def test_extract_keywords():
    assert extract_keywords("Who is the MENTOR, the mentor?") == ["who", "the", "mentor"]
