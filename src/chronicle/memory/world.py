"""World state: one merged state record per entity."""

import copy
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

import aiosqlite

from chronicle.core.logging import get_logger
from chronicle.core.types import WorldState
from chronicle.core.typing import Clock, JSONDict
from chronicle.memory.database import Database, EntityLocks, dumps, loads

logger = get_logger("memory.world")


def merge_map(current: Mapping[str, Any], update: Mapping[str, Any]) -> JSONDict:
    """Key-by-key merge. Nested dicts merge recursively, leaves overwrite."""
    merged = copy.deepcopy(dict(current))
    for key, value in update.items():
        existing = merged.get(key)
        if isinstance(existing, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_map(existing, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def union_set(current: Iterable[str], update: Iterable[str]) -> set[str]:
    """Set union: updates can add members, never remove them."""
    return set(current) | set(update)


def replace_scalar(current: Any, update: Any) -> Any:
    return update


@dataclass
class WorldStatePatch:
    """Partial world state update. ``None`` means "leave untouched"."""

    npc_relationships: JSONDict | None = None
    unlocked_locations: Iterable[str] | None = None
    story_flags: JSONDict | None = None
    narrative_summary: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorldStatePatch":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown world state fields: {', '.join(sorted(unknown))}")
        return cls(**data)

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def apply(self, state: WorldState) -> WorldState:
        """Return a new state with this patch merged in."""
        merged = copy.deepcopy(state)
        if self.npc_relationships is not None:
            merged.npc_relationships = merge_map(merged.npc_relationships, self.npc_relationships)
        if self.unlocked_locations is not None:
            if isinstance(self.unlocked_locations, str):
                raise ValueError("unlocked_locations must be a collection, not a string")
            merged.unlocked_locations = union_set(
                merged.unlocked_locations, self.unlocked_locations
            )
        if self.story_flags is not None:
            merged.story_flags = merge_map(merged.story_flags, self.story_flags)
        if self.narrative_summary is not None:
            merged.narrative_summary = replace_scalar(
                merged.narrative_summary, self.narrative_summary
            )
        return merged


def _row_to_state(row: aiosqlite.Row) -> WorldState:
    return WorldState(
        entity_id=row["entity_id"],
        npc_relationships=loads(row["npc_relationships"], {}),
        unlocked_locations=set(loads(row["unlocked_locations"], [])),
        story_flags=loads(row["story_flags"], {}),
        narrative_summary=row["narrative_summary"] or "",
        updated_at=row["updated_at"],
    )


class WorldStateStore:
    """Per-entity state updated only through partial merges.

    Two sequential updates touching disjoint keys are both visible
    afterwards; nothing here replaces a whole record.
    """

    def __init__(
        self,
        db: Database,
        locks: EntityLocks | None = None,
        clock: Clock = datetime.now,
    ):
        self.db = db
        self._locks = locks if locks is not None else EntityLocks()
        self._clock = clock

    async def _load(self, conn: aiosqlite.Connection, entity_id: int) -> WorldState | None:
        async with conn.execute(
            """SELECT entity_id, npc_relationships, unlocked_locations, story_flags,
                      narrative_summary, updated_at
               FROM world_state WHERE entity_id = ?""",
            (entity_id,),
        ) as cursor:
            row = await cursor.fetchone()
            return _row_to_state(row) if row else None

    async def _create(self, conn: aiosqlite.Connection, entity_id: int) -> WorldState:
        now = self._clock()
        await conn.execute(
            """INSERT INTO world_state (entity_id, created_at, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(entity_id) DO NOTHING""",
            (entity_id, now, now),
        )
        logger.info(f"Initialized world state for entity {entity_id}")
        return WorldState(entity_id=entity_id, updated_at=now)

    async def get(self, entity_id: int) -> WorldState:
        """Current state; a default empty one is created on first access."""
        state = await self._load(self.db.conn, entity_id)
        if state is not None:
            return state
        async with self._locks(entity_id), self.db.transaction() as conn:
            state = await self._load(conn, entity_id)
            if state is None:
                state = await self._create(conn, entity_id)
        return state

    async def update(
        self, entity_id: int, partial: WorldStatePatch | Mapping[str, Any]
    ) -> WorldState:
        """Merge only the fields present in ``partial``."""
        patch = partial if isinstance(partial, WorldStatePatch) else WorldStatePatch.from_dict(partial)

        async with self._locks(entity_id), self.db.transaction() as conn:
            current = await self._load(conn, entity_id)
            if current is None:
                current = await self._create(conn, entity_id)
            if patch.is_empty():
                return current

            merged = patch.apply(current)
            merged.updated_at = self._clock()
            await conn.execute(
                """UPDATE world_state
                   SET npc_relationships = ?, unlocked_locations = ?, story_flags = ?,
                       narrative_summary = ?, updated_at = ?
                   WHERE entity_id = ?""",
                (
                    dumps(merged.npc_relationships),
                    dumps(sorted(merged.unlocked_locations)),
                    dumps(merged.story_flags),
                    merged.narrative_summary,
                    merged.updated_at,
                    entity_id,
                ),
            )

        logger.debug(f"Merged world state for entity {entity_id}")
        return merged
