"""Rolling narrative summary: one bounded "story so far" per entity."""

from chronicle.core.logging import get_logger
from chronicle.llm.summarizer import Summarizer, summarize_or_none
from chronicle.memory.database import EntityLocks
from chronicle.memory.world import WorldStatePatch, WorldStateStore

logger = get_logger("memory.summary")

DEFAULT_SUMMARY = (
    "A new adventurer has recently begun their journey. Through discipline and "
    "dedication, they seek to unlock their true potential. The path ahead is "
    "unclear, but they are determined to see where it will lead."
)
DEVELOPMENT_TEMPLATE = "Most recently: {development}"
ELISION = "..."


def word_count(text: str) -> int:
    return len(text.split())


def compact(text: str, max_words: int, head_words: int) -> str:
    """Bound ``text`` to ``max_words`` while keeping its start and its end.

    The first ``head_words`` words orient the reader (who/what); the
    remaining budget, minus one word for the elision marker, goes to the
    most recent words.
    """
    words = text.split()
    if len(words) <= max_words:
        return text
    head_words = min(head_words, max_words - 2)
    tail_words = max_words - head_words - 1
    head = " ".join(words[:head_words])
    tail = " ".join(words[-tail_words:])
    return f"{head}\n\n{ELISION}\n\n{tail}"


class NarrativeSummaryManager:
    """Keeps one bounded rolling summary per entity, stored in its world state.

    Updates go through the summarizer collaborator when one is available;
    otherwise, or when it fails, a deterministic append-and-compact
    fallback keeps the story current.
    """

    def __init__(
        self,
        world: WorldStateStore,
        summarizer: Summarizer | None = None,
        max_words: int = 500,
        head_words: int = 100,
        default_summary: str = DEFAULT_SUMMARY,
        summarizer_timeout: float = 30.0,
    ):
        if max_words < 3:
            raise ValueError("max_words must be at least 3")
        self.world = world
        self.summarizer = summarizer
        self.max_words = max_words
        self.head_words = head_words
        self.default_summary = default_summary
        self.summarizer_timeout = summarizer_timeout
        self._locks = EntityLocks()

    async def current(self, entity_id: int) -> str:
        state = await self.world.get(entity_id)
        return state.narrative_summary or self.default_summary

    async def update(self, entity_id: int, new_development: str) -> str:
        """Fold a new development into the summary and store it."""
        async with self._locks(entity_id):
            prior = await self.current(entity_id)

            summary = await summarize_or_none(
                self.summarizer, prior, new_development, self.summarizer_timeout
            )
            if summary is None:
                summary = self._fallback(prior, new_development)
            elif word_count(summary) > self.max_words:
                logger.warning(
                    f"Summary too long ({word_count(summary)} words), compacting"
                )
                summary = compact(summary, self.max_words, self.head_words)

            await self.world.update(entity_id, WorldStatePatch(narrative_summary=summary))

        logger.info(f"Narrative summary updated for entity {entity_id}")
        return summary

    async def reset(self, entity_id: int) -> str:
        """Restore the default summary (new chapter)."""
        async with self._locks(entity_id):
            await self.world.update(
                entity_id, WorldStatePatch(narrative_summary=self.default_summary)
            )
        logger.info(f"Narrative summary reset for entity {entity_id}")
        return self.default_summary

    async def stats(self, entity_id: int) -> dict:
        summary = await self.current(entity_id)
        count = word_count(summary)
        return {
            "word_count": count,
            "character_count": len(summary),
            "is_within_limit": count <= self.max_words,
        }

    def _fallback(self, prior: str, new_development: str) -> str:
        addition = DEVELOPMENT_TEMPLATE.format(development=new_development.strip())
        return compact(f"{prior}\n\n{addition}", self.max_words, self.head_words)
