"""Working memory: the last few narrative events per entity in full detail."""

from dataclasses import replace
from datetime import datetime, timedelta

import aiosqlite

from chronicle.core.logging import get_logger
from chronicle.core.types import MemoryEvent
from chronicle.core.typing import Clock
from chronicle.memory.database import Database, EntityLocks, dumps, loads

logger = get_logger("memory.working")

DEFAULT_CAPACITY = 10
DEFAULT_TTL_DAYS = 30


def row_to_event(row: aiosqlite.Row, id_column: str = "id") -> MemoryEvent:
    """Build a MemoryEvent from an event log or working memory row."""
    return MemoryEvent(
        id=row[id_column],
        entity_id=row["entity_id"],
        event_type=row["event_type"],
        description=row["description"],
        participants=frozenset(loads(row["participants"], [])),
        stat_deltas=loads(row["stat_deltas"], {}),
        context=loads(row["context"], {}),
        created_at=row["created_at"],
    )


class WorkingMemoryStore:
    """Bounded FIFO window of recent events, kept separately for each entity.

    Every append also lands in the narrative event log, which is what the
    episode compressor later folds; folded events leave the window too.
    The window itself never holds more than ``capacity`` events for an
    entity; the oldest one is evicted first. Entries older than ``ttl_days``
    are dropped by ``purge_expired``.
    Storage failures propagate: losing recent events breaks continuity.
    """

    def __init__(
        self,
        db: Database,
        capacity: int = DEFAULT_CAPACITY,
        locks: EntityLocks | None = None,
        ttl_days: float = DEFAULT_TTL_DAYS,
        clock: Clock = datetime.now,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.db = db
        self.capacity = capacity
        self.ttl = timedelta(days=ttl_days)
        self._locks = locks if locks is not None else EntityLocks()
        self._clock = clock

    async def append(self, entity_id: int, event: MemoryEvent) -> MemoryEvent:
        """Record an event, then trim the entity's window back to capacity."""
        created_at = event.created_at or self._clock()
        participants = dumps(sorted(event.participants))
        stat_deltas = dumps(event.stat_deltas)
        context = dumps(event.context)

        async with self._locks(entity_id), self.db.transaction() as conn:
            cursor = await conn.execute(
                """INSERT INTO narrative_events
                   (entity_id, event_type, description, participants,
                    stat_deltas, context, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    entity_id,
                    event.event_type,
                    event.description,
                    participants,
                    stat_deltas,
                    context,
                    created_at,
                ),
            )
            event_id = cursor.lastrowid

            await conn.execute(
                """INSERT INTO working_memory
                   (entity_id, event_id, event_type, description, participants,
                    stat_deltas, context, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entity_id,
                    event_id,
                    event.event_type,
                    event.description,
                    participants,
                    stat_deltas,
                    context,
                    created_at,
                ),
            )

            # Keep only the most recent `capacity` rows for this entity
            trimmed = await conn.execute(
                """DELETE FROM working_memory
                   WHERE entity_id = ? AND id NOT IN (
                       SELECT id FROM working_memory
                       WHERE entity_id = ?
                       ORDER BY id DESC
                       LIMIT ?
                   )""",
                (entity_id, entity_id, self.capacity),
            )
            if trimmed.rowcount:
                logger.debug(f"Evicted {trimmed.rowcount} event(s) for entity {entity_id}")

        return replace(event, id=event_id, entity_id=entity_id, created_at=created_at)

    async def recent(self, entity_id: int, limit: int = DEFAULT_CAPACITY) -> list[MemoryEvent]:
        """Most recent events, oldest first, at most min(limit, capacity)."""
        if limit < 0:
            raise ValueError("limit must not be negative")
        limit = min(limit, self.capacity)
        if limit == 0:
            return []

        async with self.db.conn.execute(
            """SELECT event_id, entity_id, event_type, description, participants,
                      stat_deltas, context, created_at
               FROM working_memory
               WHERE entity_id = ?
               ORDER BY id DESC
               LIMIT ?""",
            (entity_id, limit),
        ) as cursor:
            rows = await cursor.fetchall()

        # Return chronologically
        return [row_to_event(row, id_column="event_id") for row in reversed(rows)]

    async def count(self, entity_id: int) -> int:
        async with self.db.conn.execute(
            "SELECT COUNT(*) FROM working_memory WHERE entity_id = ?", (entity_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def purge_expired(self) -> int:
        """Drop window entries past their retention horizon, for every entity."""
        cutoff = self._clock() - self.ttl
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM working_memory WHERE created_at <= ?", (cutoff,)
            )
            purged = cursor.rowcount
        if purged:
            logger.info(f"Purged {purged} expired working memory entries")
        return purged
