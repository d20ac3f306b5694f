"""Tests for world state merging."""

import asyncio

import pytest

from chronicle.core.types import WorldState
from chronicle.memory.database import Database
from chronicle.memory.world import WorldStatePatch, WorldStateStore, merge_map, union_set


@pytest.fixture
def world(db: Database, clock) -> WorldStateStore:
    return WorldStateStore(db, clock=clock)


@pytest.mark.asyncio
async def test_get_creates_default(world: WorldStateStore, clock):
    state = await world.get(7)
    assert state.entity_id == 7
    assert state.npc_relationships == {}
    assert state.unlocked_locations == set()
    assert state.story_flags == {}
    assert state.narrative_summary == ""
    assert state.updated_at == clock()


@pytest.mark.asyncio
async def test_sequential_relationship_updates_both_survive(world: WorldStateStore):
    await world.update(7, {"npc_relationships": {"A": "friendly"}})
    state = await world.update(7, {"npc_relationships": {"B": "professional"}})

    assert state.npc_relationships == {"A": "friendly", "B": "professional"}
    assert (await world.get(7)).npc_relationships == {"A": "friendly", "B": "professional"}


@pytest.mark.asyncio
async def test_locations_are_unioned(world: WorldStateStore):
    await world.update(1, WorldStatePatch(unlocked_locations={"village"}))
    await world.update(1, WorldStatePatch(unlocked_locations=["forest", "village"]))

    assert (await world.get(1)).unlocked_locations == {"village", "forest"}


@pytest.mark.asyncio
async def test_nested_flags_merge(world: WorldStateStore):
    await world.update(1, {"story_flags": {"quests": {"mountain": "started"}, "chapter": 1}})
    await world.update(1, {"story_flags": {"quests": {"river": "started"}}})
    state = await world.update(1, {"story_flags": {"quests": {"mountain": "done"}, "chapter": 2}})

    assert state.story_flags == {
        "quests": {"mountain": "done", "river": "started"},
        "chapter": 2,
    }


@pytest.mark.asyncio
async def test_summary_replaced_only_when_included(world: WorldStateStore):
    await world.update(1, {"narrative_summary": "Chapter one."})
    await world.update(1, {"story_flags": {"met_vera": True}})
    assert (await world.get(1)).narrative_summary == "Chapter one."

    await world.update(1, {"narrative_summary": "Chapter two."})
    assert (await world.get(1)).narrative_summary == "Chapter two."


@pytest.mark.asyncio
async def test_concurrent_updates_all_applied(world: WorldStateStore):
    await asyncio.gather(
        *(world.update(1, {"npc_relationships": {f"npc{i}": "neutral"}}) for i in range(10))
    )
    state = await world.get(1)
    assert set(state.npc_relationships) == {f"npc{i}" for i in range(10)}


@pytest.mark.asyncio
async def test_entities_are_isolated(world: WorldStateStore):
    await world.update(1, {"npc_relationships": {"A": "friendly"}})
    assert (await world.get(2)).npc_relationships == {}


@pytest.mark.asyncio
async def test_update_bumps_timestamp(world: WorldStateStore, clock):
    await world.get(1)
    later = clock.advance(minutes=5)
    state = await world.update(1, {"story_flags": {"x": 1}})
    assert state.updated_at == later


@pytest.mark.asyncio
async def test_unknown_fields_rejected(world: WorldStateStore):
    with pytest.raises(ValueError):
        await world.update(1, {"inventory": ["sword"]})


@pytest.mark.asyncio
async def test_string_locations_rejected(world: WorldStateStore):
    with pytest.raises(ValueError):
        await world.update(1, {"unlocked_locations": "village"})
    assert (await world.get(1)).unlocked_locations == set()


def test_merge_map_does_not_mutate_inputs():
    current = {"a": {"b": 1}}
    merged = merge_map(current, {"a": {"c": 2}})
    assert merged == {"a": {"b": 1, "c": 2}}
    assert current == {"a": {"b": 1}}


def test_union_set():
    assert union_set({"a"}, ["b", "a"]) == {"a", "b"}


def test_empty_patch_is_noop():
    state = WorldState(1, npc_relationships={"A": "friendly"})
    patch = WorldStatePatch()
    assert patch.is_empty()
    assert patch.apply(state) == state
