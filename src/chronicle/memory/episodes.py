"""Episode compression: folds aged events into compact summaries."""

from collections import Counter
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime, timedelta

import aiosqlite

from chronicle.core.logging import get_logger
from chronicle.core.types import EpisodeSummary, MemoryEvent
from chronicle.core.typing import Clock, StatDeltas
from chronicle.llm.summarizer import Summarizer, summarize_or_none
from chronicle.memory.database import Database, EntityLocks, dumps, loads
from chronicle.memory.long_term import LongTermMemoryStore
from chronicle.memory.working import row_to_event

logger = get_logger("memory.episodes")

PROMOTE_EVENT_TYPES = ("quest_completed", "milestone")
PROMOTED_IMPORTANCE = 0.7
DEFAULT_EPISODE_TTL_DAYS = 90


class _ClaimLost(Exception):
    """Another compression archived part of the batch first."""


def aggregate_stat_deltas(events: Iterable[MemoryEvent]) -> StatDeltas:
    """Per-stat sum across events."""
    totals: Counter[str] = Counter()
    for event in events:
        for stat, delta in event.stat_deltas.items():
            totals[stat] += delta
    return dict(totals)


def fallback_summary(events: list[MemoryEvent]) -> str:
    """Deterministic enumeration used when no summarizer answers."""
    descriptions = "; ".join(e.description.strip().rstrip(".") for e in events)
    noun = "event" if len(events) == 1 else "events"
    return f"During this period, {len(events)} {noun} took place: {descriptions}."


def _describe(event: MemoryEvent) -> str:
    line = f"- [{event.event_type}] {event.description}"
    if event.participants:
        line += f" (with {', '.join(sorted(event.participants))})"
    return line


def _row_to_episode(row: aiosqlite.Row) -> EpisodeSummary:
    return EpisodeSummary(
        id=row["id"],
        entity_id=row["entity_id"],
        summary_text=row["summary_text"],
        event_count=row["event_count"],
        participants_involved=frozenset(loads(row["participants"], [])),
        total_stat_deltas=loads(row["stat_deltas"], {}),
        period_start=row["period_start"],
        period_end=row["period_end"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


class EpisodeCompressor:
    """Claims a batch of aged events, summarizes it and archives the batch.

    Compression is serialized per entity, and the archive step only
    succeeds if every claimed event is still in the log, so an event is
    never folded into two episodes.
    """

    def __init__(
        self,
        db: Database,
        summarizer: Summarizer | None = None,
        long_term: LongTermMemoryStore | None = None,
        batch_size: int = 50,
        min_events: int = 1,
        promote_event_types: Iterable[str] = PROMOTE_EVENT_TYPES,
        summarizer_timeout: float = 30.0,
        episode_ttl_days: float = DEFAULT_EPISODE_TTL_DAYS,
        clock: Clock = datetime.now,
    ):
        if batch_size < 1 or min_events < 1:
            raise ValueError("batch_size and min_events must be at least 1")
        self.db = db
        self.summarizer = summarizer
        self.long_term = long_term
        self.batch_size = batch_size
        self.min_events = min_events
        self.promote_event_types = frozenset(promote_event_types)
        self.summarizer_timeout = summarizer_timeout
        self.episode_ttl = timedelta(days=episode_ttl_days)
        self._clock = clock
        self._locks = EntityLocks()

    async def compress(self, entity_id: int, age_threshold_days: float = 7) -> EpisodeSummary | None:
        """Fold events older than the threshold into one episode.

        Returns None when nothing qualifies, so repeated calls without new
        aged events never create duplicate or empty episodes.
        """
        async with self._locks(entity_id):
            cutoff = self._clock() - timedelta(days=age_threshold_days)
            events = await self._aged_events(entity_id, cutoff)
            if len(events) < self.min_events:
                logger.debug(
                    f"Not enough aged events to compress for entity {entity_id} "
                    f"(found {len(events)})"
                )
                return None

            logger.info(f"Compressing {len(events)} events for entity {entity_id}")
            summary_text = await summarize_or_none(
                self.summarizer,
                "",
                "\n".join(_describe(e) for e in events),
                self.summarizer_timeout,
            )
            if summary_text is None:
                summary_text = fallback_summary(events)

            participants = frozenset().union(*(e.participants for e in events))
            now = self._clock()
            episode = EpisodeSummary(
                entity_id=entity_id,
                summary_text=summary_text,
                event_count=len(events),
                participants_involved=participants,
                total_stat_deltas=aggregate_stat_deltas(events),
                period_start=events[0].created_at,
                period_end=events[-1].created_at,
                created_at=now,
                expires_at=now + self.episode_ttl,
            )

            try:
                episode_id = await self._archive(entity_id, events, episode)
            except _ClaimLost:
                logger.warning(
                    f"Events for entity {entity_id} were archived concurrently, "
                    "discarding this episode"
                )
                return None

            episode = replace(episode, id=episode_id)

        await self._promote(entity_id, events)
        return episode

    async def list_episodes(self, entity_id: int, limit: int = 5) -> list[EpisodeSummary]:
        """Latest ``limit`` unexpired episodes, oldest first."""
        if limit <= 0:
            return []
        async with self.db.conn.execute(
            """SELECT id, entity_id, summary_text, event_count, participants,
                      stat_deltas, period_start, period_end, created_at, expires_at
               FROM episode_summaries
               WHERE entity_id = ? AND expires_at > ?
               ORDER BY period_end DESC, id DESC
               LIMIT ?""",
            (entity_id, self._clock(), limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_episode(row) for row in reversed(rows)]

    async def purge_expired(self) -> int:
        """Delete episodes past their retention horizon."""
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM episode_summaries WHERE expires_at <= ?", (self._clock(),)
            )
            purged = cursor.rowcount
        if purged:
            logger.info(f"Purged {purged} expired episode(s)")
        return purged

    async def entities_with_aged_events(self, age_threshold_days: float = 7) -> list[int]:
        cutoff = self._clock() - timedelta(days=age_threshold_days)
        async with self.db.conn.execute(
            "SELECT DISTINCT entity_id FROM narrative_events WHERE created_at < ? "
            "ORDER BY entity_id",
            (cutoff,),
        ) as cursor:
            return [row[0] async for row in cursor]

    async def _aged_events(self, entity_id: int, cutoff: datetime) -> list[MemoryEvent]:
        async with self.db.conn.execute(
            """SELECT id, entity_id, event_type, description, participants,
                      stat_deltas, context, created_at
               FROM narrative_events
               WHERE entity_id = ? AND created_at < ?
               ORDER BY created_at, id
               LIMIT ?""",
            (entity_id, cutoff, self.batch_size),
        ) as cursor:
            return [row_to_event(row) async for row in cursor]

    async def _archive(
        self, entity_id: int, events: list[MemoryEvent], episode: EpisodeSummary
    ) -> int:
        ids = [e.id for e in events]
        placeholders = ", ".join("?" for _ in ids)

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                f"DELETE FROM narrative_events WHERE entity_id = ? AND id IN ({placeholders})",
                (entity_id, *ids),
            )
            if cursor.rowcount != len(ids):
                raise _ClaimLost()

            # Folded events leave the working window too
            await conn.execute(
                f"DELETE FROM working_memory WHERE entity_id = ? AND event_id IN ({placeholders})",
                (entity_id, *ids),
            )

            cursor = await conn.execute(
                """INSERT INTO episode_summaries
                   (entity_id, summary_text, event_count, participants, stat_deltas,
                    period_start, period_end, created_at, expires_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entity_id,
                    episode.summary_text,
                    episode.event_count,
                    dumps(sorted(episode.participants_involved)),
                    dumps(episode.total_stat_deltas),
                    episode.period_start,
                    episode.period_end,
                    episode.created_at,
                    episode.expires_at,
                ),
            )
            return cursor.lastrowid

    async def _promote(self, entity_id: int, events: list[MemoryEvent]) -> None:
        """Keep milestone events as long-term facts after their raw form is gone."""
        if self.long_term is None:
            return
        promoted = 0
        for event in events:
            if event.event_type in self.promote_event_types:
                await self.long_term.remember(
                    entity_id, event.description, PROMOTED_IMPORTANCE, overwrite=True
                )
                promoted += 1
        if promoted:
            logger.info(f"Promoted {promoted} event(s) to long-term memory for entity {entity_id}")
