"""Context assembly: every memory tier in one bundle for a generation request."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from chronicle.core.logging import get_logger
from chronicle.core.types import ContextBundle, WorldState
from chronicle.memory.episodes import EpisodeCompressor
from chronicle.memory.long_term import LongTermMemoryStore
from chronicle.memory.summary import DEFAULT_SUMMARY, NarrativeSummaryManager
from chronicle.memory.working import WorkingMemoryStore
from chronicle.memory.world import WorldStateStore

logger = get_logger("memory.context")

T = TypeVar("T")


async def _section(
    name: str, entity_id: int, fetch: Callable[[], Awaitable[T]], default: T
) -> T:
    """Run one sub-fetch; any failure or empty result yields the default."""
    try:
        result = await fetch()
    except Exception as e:
        logger.warning(f"Context section '{name}' failed for entity {entity_id}: {e}")
        return default
    return result if result else default


class ContextAssembler:
    """Builds a ContextBundle that is always structurally complete.

    Sections are fetched concurrently and independently, so one failing
    subsystem only empties its own section.
    """

    def __init__(
        self,
        working: WorkingMemoryStore,
        episodes: EpisodeCompressor,
        long_term: LongTermMemoryStore,
        world: WorldStateStore,
        summaries: NarrativeSummaryManager,
        working_limit: int = 10,
        episode_limit: int = 3,
        fact_limit: int = 20,
        min_importance: float = 0.7,
    ):
        self.working = working
        self.episodes = episodes
        self.long_term = long_term
        self.world = world
        self.summaries = summaries
        self.working_limit = working_limit
        self.episode_limit = episode_limit
        self.fact_limit = fact_limit
        self.min_importance = min_importance

    async def assemble(self, entity_id: int) -> ContextBundle:
        working, episodes, facts, world, summary = await asyncio.gather(
            _section(
                "working_memory",
                entity_id,
                lambda: self.working.recent(entity_id, self.working_limit),
                [],
            ),
            _section(
                "episode_summaries",
                entity_id,
                lambda: self.episodes.list_episodes(entity_id, self.episode_limit),
                [],
            ),
            _section(
                "long_term_facts",
                entity_id,
                lambda: self.long_term.top_facts(entity_id, self.fact_limit, self.min_importance),
                [],
            ),
            _section(
                "world_state",
                entity_id,
                lambda: self.world.get(entity_id),
                WorldState(entity_id),
            ),
            _section(
                "narrative_summary",
                entity_id,
                lambda: self.summaries.current(entity_id),
                getattr(self.summaries, "default_summary", DEFAULT_SUMMARY),
            ),
        )
        return ContextBundle(
            working_memory=working,
            episode_summaries=episodes,
            long_term_facts=facts,
            world_state=world,
            narrative_summary=summary,
        )
