"""
Narrative memory service - single entry point for callers.

Wires the memory tiers and the response cache over one database and
exposes their operations. Construct one per process and pass it around;
tests build their own against a temporary database.
"""

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from chronicle.cache.response_cache import ResponseCache
from chronicle.cache.stats import CacheStatistics
from chronicle.cache.volatile import RedisVolatileStore, VolatileStore
from chronicle.core.config import Settings
from chronicle.core.logging import get_logger
from chronicle.core.types import ContextBundle, EpisodeSummary, LongTermFact, MemoryEvent, WorldState
from chronicle.core.typing import Clock
from chronicle.llm.base import LLMConfig, LLMProvider, LLMResponse
from chronicle.llm.claude import ClaudeProvider
from chronicle.llm.generation import CachedGenerator
from chronicle.llm.summarizer import LLMSummarizer, Summarizer
from chronicle.memory.context import ContextAssembler
from chronicle.memory.database import Database
from chronicle.memory.episodes import EpisodeCompressor
from chronicle.memory.long_term import Embedder, LongTermMemoryStore
from chronicle.memory.summary import NarrativeSummaryManager
from chronicle.memory.working import WorkingMemoryStore
from chronicle.memory.world import WorldStatePatch, WorldStateStore

logger = get_logger("core.service")


class NarrativeMemoryService:
    """Facade over working memory, episodes, facts, world state and the cache."""

    def __init__(
        self,
        settings: Settings,
        volatile: VolatileStore | None = None,
        provider: LLMProvider | None = None,
        summarizer: Summarizer | None = None,
        embedder: Embedder | None = None,
        clock: Clock = datetime.now,
    ):
        self.settings = settings
        self.db = Database(settings.db_path)
        self.volatile = volatile
        self.provider = provider
        self._clock = clock

        self.working = WorkingMemoryStore(
            self.db,
            capacity=settings.working_memory_capacity,
            ttl_days=settings.working_memory_ttl_days,
            clock=clock,
        )
        self.long_term = LongTermMemoryStore(self.db, embedder=embedder, clock=clock)
        self.episodes = EpisodeCompressor(
            self.db,
            summarizer=summarizer,
            long_term=self.long_term,
            batch_size=settings.episode_batch_size,
            min_events=settings.episode_min_events,
            summarizer_timeout=settings.summarizer_timeout_seconds,
            episode_ttl_days=settings.episode_ttl_days,
            clock=clock,
        )
        self.world = WorldStateStore(self.db, clock=clock)
        self.summaries = NarrativeSummaryManager(
            self.world,
            summarizer=summarizer,
            max_words=settings.narrative_summary_max_words,
            head_words=settings.narrative_summary_head_words,
            summarizer_timeout=settings.summarizer_timeout_seconds,
        )
        self.context = ContextAssembler(
            self.working,
            self.episodes,
            self.long_term,
            self.world,
            self.summaries,
            working_limit=settings.context_working_limit,
            episode_limit=settings.context_episode_limit,
            fact_limit=settings.context_fact_limit,
            min_importance=settings.context_min_importance,
        )
        self.cache = ResponseCache(
            self.db,
            volatile=volatile,
            stats=CacheStatistics(),
            response_ttl=timedelta(hours=settings.response_ttl_hours),
            component_ttl=timedelta(hours=settings.component_ttl_hours),
            volatile_timeout=settings.volatile_timeout_seconds,
            clock=clock,
        )
        self.generator = (
            CachedGenerator(provider, self.cache, LLMConfig(model=settings.default_model))
            if provider
            else None
        )

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = datetime.now) -> "NarrativeMemoryService":
        """Build a service with the collaborators the settings enable."""
        volatile = None
        if settings.redis_enabled:
            volatile = RedisVolatileStore(
                settings.redis_url, timeout=settings.volatile_timeout_seconds
            )
        else:
            logger.info("Redis disabled, L1 cache will use the durable tier only")

        provider = None
        summarizer = None
        if settings.anthropic_api_key:
            provider = ClaudeProvider(
                api_key=settings.anthropic_api_key, default_model=settings.default_model
            )
            summarizer = LLMSummarizer(
                provider,
                model=settings.summary_model,
                max_words=settings.narrative_summary_max_words,
            )
        else:
            logger.info("No Anthropic API key, summaries will use deterministic fallbacks")

        return cls(settings, volatile=volatile, provider=provider, summarizer=summarizer, clock=clock)

    # Lifecycle

    async def connect(self) -> None:
        await self.db.connect()

    async def close(self) -> None:
        await self.cache.drain()
        if self.volatile is not None:
            try:
                await self.volatile.close()
            except Exception as e:
                logger.warning(f"Error closing volatile store: {e}")
        await self.db.close()

    async def __aenter__(self) -> "NarrativeMemoryService":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # Working memory and episodes

    async def record_event(self, entity_id: int, event: MemoryEvent) -> MemoryEvent:
        return await self.working.append(entity_id, event)

    async def get_recent_events(self, entity_id: int, limit: int = 10) -> list[MemoryEvent]:
        return await self.working.recent(entity_id, limit)

    async def compress_aged(
        self, entity_id: int, age_threshold_days: float | None = None
    ) -> EpisodeSummary | None:
        days = self.settings.episode_age_days if age_threshold_days is None else age_threshold_days
        return await self.episodes.compress(entity_id, days)

    async def compress_all_aged(self, age_threshold_days: float | None = None) -> int:
        """Compress aged events for every entity. Returns episodes created.

        One entity failing does not stop the others.
        """
        days = self.settings.episode_age_days if age_threshold_days is None else age_threshold_days
        created = 0
        for entity_id in await self.episodes.entities_with_aged_events(days):
            try:
                # Batches are bounded; drain the backlog one episode at a time
                while await self.episodes.compress(entity_id, days) is not None:
                    created += 1
            except Exception as e:
                logger.error(f"Compression failed for entity {entity_id}: {e}", exc_info=True)
        if created:
            logger.info(f"Created {created} episode(s) during maintenance")
        return created

    async def list_episodes(self, entity_id: int, limit: int = 5) -> list[EpisodeSummary]:
        return await self.episodes.list_episodes(entity_id, limit)

    async def purge_expired_memories(self) -> int:
        """Delete working memory entries and episodes past their retention horizon."""
        return await self.working.purge_expired() + await self.episodes.purge_expired()

    # Long-term facts

    async def remember_fact(
        self, entity_id: int, content_text: str, importance: float = 0.8, overwrite: bool = False
    ) -> LongTermFact:
        return await self.long_term.remember(entity_id, content_text, importance, overwrite)

    async def reinforce_fact(self, entity_id: int, content_text: str, delta: float = 0.1) -> float:
        return await self.long_term.reinforce(entity_id, content_text, delta)

    async def top_facts(
        self, entity_id: int, limit: int = 20, min_importance: float = 0.0
    ) -> list[LongTermFact]:
        return await self.long_term.top_facts(entity_id, limit, min_importance)

    async def search_facts(self, entity_id: int, query: str, limit: int = 5) -> list[LongTermFact]:
        return await self.long_term.search(entity_id, query, limit)

    # World state and summary

    async def get_world_state(self, entity_id: int) -> WorldState:
        return await self.world.get(entity_id)

    async def update_world_state(
        self, entity_id: int, partial: WorldStatePatch | Mapping[str, Any]
    ) -> WorldState:
        return await self.world.update(entity_id, partial)

    async def get_narrative_summary(self, entity_id: int) -> str:
        return await self.summaries.current(entity_id)

    async def update_narrative_summary(self, entity_id: int, new_development: str) -> str:
        return await self.summaries.update(entity_id, new_development)

    async def reset_narrative_summary(self, entity_id: int) -> str:
        return await self.summaries.reset(entity_id)

    async def narrative_summary_stats(self, entity_id: int) -> dict:
        return await self.summaries.stats(entity_id)

    async def assemble_context(self, entity_id: int) -> ContextBundle:
        return await self.context.assemble(entity_id)

    # Cache

    async def cache_get(self, request: Mapping[str, Any]) -> Any | None:
        return await self.cache.get(request)

    async def cache_set(
        self, request: Mapping[str, Any], payload: Any, ttl: timedelta | None = None
    ) -> None:
        await self.cache.set(request, payload, ttl)

    async def cache_get_static(self, component_type: str, identifier: str = "default") -> Any | None:
        return await self.cache.get_static(component_type, identifier)

    async def cache_set_static(
        self, component_type: str, identifier: str, payload: Any, ttl: timedelta | None = None
    ) -> None:
        await self.cache.set_static(component_type, identifier, payload, ttl)

    async def cache_invalidate(self, pattern: str, include_responses: bool = False) -> int:
        return await self.cache.invalidate(pattern, include_responses)

    def cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()

    async def purge_expired_cache(self) -> int:
        return await self.cache.purge_expired()

    # Generation

    async def generate(self, request: Mapping[str, Any]) -> LLMResponse:
        """Cache-wrapped generator call. Provider errors propagate."""
        if self.generator is None:
            raise RuntimeError("No generator configured. Set CHRONICLE_ANTHROPIC_API_KEY.")
        return await self.generator.generate(request)
