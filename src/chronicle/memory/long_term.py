"""Long-term memory: durable facts ranked by reinforced importance."""

import math
import re
import sqlite3
from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

import aiosqlite

from chronicle.core.logging import get_logger
from chronicle.core.types import LongTermFact
from chronicle.core.typing import Clock
from chronicle.memory.database import Database

logger = get_logger("memory.long_term")

# Keywords shorter than this carry no signal ("the", "of", ...)
MIN_KEYWORD_LENGTH = 3

_FACT_COLUMNS = "id, entity_id, content_text, importance, created_at, last_accessed_at"


class Embedder(Protocol):
    """Optional semantic collaborator for fact search."""

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        ...


def clamp_importance(value: float) -> float:
    """Clamp to [0, 1], rounding away float noise (0.9 + 0.05 == 0.95)."""
    return round(min(max(value, 0.0), 1.0), 6)


def extract_keywords(query: str) -> list[str]:
    """Distinct lowercase keywords in first-seen order."""
    seen: dict[str, None] = {}
    for word in re.findall(r"\w+", query.lower()):
        if len(word) >= MIN_KEYWORD_LENGTH:
            seen.setdefault(word, None)
    return list(seen)


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def _row_to_fact(row: aiosqlite.Row) -> LongTermFact:
    return LongTermFact(
        id=row["id"],
        entity_id=row["entity_id"],
        content_text=row["content_text"],
        importance_score=row["importance"],
        created_at=row["created_at"],
        last_accessed_at=row["last_accessed_at"],
    )


class LongTermMemoryStore:
    """Importance-ranked facts, unique per (entity, text).

    Importance only changes through initial assignment, an explicit
    overwrite, or reinforcement. Nothing here decays it.
    """

    def __init__(
        self,
        db: Database,
        embedder: Embedder | None = None,
        clock: Clock = datetime.now,
    ):
        self.db = db
        self.embedder = embedder
        self._clock = clock

    async def get(self, entity_id: int, content_text: str) -> LongTermFact | None:
        async with self.db.conn.execute(
            f"SELECT {_FACT_COLUMNS} FROM long_term_facts "
            "WHERE entity_id = ? AND content_text = ?",
            (entity_id, content_text),
        ) as cursor:
            row = await cursor.fetchone()
            return _row_to_fact(row) if row else None

    async def remember(
        self,
        entity_id: int,
        content_text: str,
        importance: float = 0.8,
        overwrite: bool = False,
    ) -> LongTermFact:
        """Store a fact.

        An existing fact keeps its importance unless ``overwrite`` is set, in
        which case it becomes the larger of the old and new value. Use
        ``reinforce`` to raise importance incrementally.
        """
        importance = clamp_importance(importance)
        now = self._clock()

        async with self.db.transaction() as conn:
            if overwrite:
                await conn.execute(
                    """INSERT INTO long_term_facts
                       (entity_id, content_text, importance, created_at, last_accessed_at)
                       VALUES (?, ?, ?, ?, ?)
                       ON CONFLICT(entity_id, content_text) DO UPDATE SET
                           importance = MAX(importance, excluded.importance),
                           last_accessed_at = excluded.last_accessed_at""",
                    (entity_id, content_text, importance, now, now),
                )
            else:
                await conn.execute(
                    """INSERT INTO long_term_facts
                       (entity_id, content_text, importance, created_at, last_accessed_at)
                       VALUES (?, ?, ?, ?, ?)
                       ON CONFLICT(entity_id, content_text) DO NOTHING""",
                    (entity_id, content_text, importance, now, now),
                )

        fact = await self.get(entity_id, content_text)
        if fact is None:
            raise RuntimeError(f"Fact for entity {entity_id} vanished after write")
        return fact

    async def reinforce(self, entity_id: int, content_text: str, delta: float = 0.1) -> float:
        """Add ``delta`` to a fact's importance (0 if unknown), clamped to [0, 1]."""
        now = self._clock()
        initial = clamp_importance(delta)

        async with self.db.transaction() as conn:
            await conn.execute(
                """INSERT INTO long_term_facts
                   (entity_id, content_text, importance, created_at, last_accessed_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(entity_id, content_text) DO UPDATE SET
                       importance = ROUND(MIN(MAX(importance + ?, 0.0), 1.0), 6),
                       last_accessed_at = excluded.last_accessed_at""",
                (entity_id, content_text, initial, now, now, delta),
            )
            async with conn.execute(
                "SELECT importance FROM long_term_facts "
                "WHERE entity_id = ? AND content_text = ?",
                (entity_id, content_text),
            ) as cursor:
                row = await cursor.fetchone()

        importance = row[0]
        logger.debug(f"Reinforced fact for entity {entity_id}: {importance:.2f}")
        return importance

    async def top_facts(
        self, entity_id: int, limit: int = 20, min_importance: float = 0.0
    ) -> list[LongTermFact]:
        """Highest-importance facts first, ties by most recently accessed."""
        if limit <= 0:
            return []
        async with self.db.conn.execute(
            f"""SELECT {_FACT_COLUMNS} FROM long_term_facts
                WHERE entity_id = ? AND importance >= ?
                ORDER BY importance DESC, last_accessed_at DESC, id DESC
                LIMIT ?""",
            (entity_id, min_importance, limit),
        ) as cursor:
            facts = [_row_to_fact(row) async for row in cursor]

        await self._touch(facts)
        return facts

    async def search(self, entity_id: int, query: str, limit: int = 5) -> list[LongTermFact]:
        """Best keyword matches for ``query``, optionally reranked semantically.

        Deterministic for identical inputs and stored data. Returns [] when
        nothing matches.
        """
        keywords = extract_keywords(query)
        if not keywords or limit <= 0:
            return []

        # Over-fetch when a semantic rerank will reorder candidates
        fetch = limit * 3 if self.embedder else limit

        results: list[LongTermFact] = []
        if self.db.fts_enabled:
            try:
                results = await self._fts_search(entity_id, keywords, fetch)
            except sqlite3.OperationalError as e:
                logger.warning(f"FTS search failed, falling back to LIKE: {e}")
                results = await self._fallback_search(entity_id, keywords, fetch)
        else:
            results = await self._fallback_search(entity_id, keywords, fetch)

        if self.embedder and results:
            results = await self._rerank(query, results)

        results = results[:limit]
        await self._touch(results)
        logger.debug(f"Fact search returned {len(results)} results for query: {query}")
        return results

    async def _fts_search(
        self, entity_id: int, keywords: list[str], limit: int
    ) -> list[LongTermFact]:
        # Quoted terms keep user punctuation out of the FTS5 query syntax
        match = " OR ".join(f'"{k}"' for k in keywords)
        sql = """
            SELECT f.id, f.entity_id, f.content_text, f.importance,
                   f.created_at, f.last_accessed_at
            FROM facts_fts
            JOIN long_term_facts f ON f.id = facts_fts.fact_id
            WHERE facts_fts MATCH ? AND facts_fts.entity_id = ?
            ORDER BY facts_fts.rank, f.importance DESC, f.id
            LIMIT ?
        """
        async with self.db.conn.execute(sql, (match, entity_id, limit)) as cursor:
            return [_row_to_fact(row) async for row in cursor]

    async def _fallback_search(
        self, entity_id: int, keywords: list[str], limit: int
    ) -> list[LongTermFact]:
        """Simple LIKE search when FTS is unavailable."""
        clause = " OR ".join("lower(content_text) LIKE ?" for _ in keywords)
        params = [entity_id, *(f"%{k}%" for k in keywords)]
        async with self.db.conn.execute(
            f"SELECT {_FACT_COLUMNS} FROM long_term_facts WHERE entity_id = ? AND ({clause})",
            params,
        ) as cursor:
            facts = [_row_to_fact(row) async for row in cursor]

        def score(fact: LongTermFact) -> int:
            text = fact.content_text.lower()
            return sum(1 for k in keywords if k in text)

        facts.sort(key=lambda f: (-score(f), -f.importance_score, f.id or 0))
        return facts[:limit]

    async def _rerank(self, query: str, facts: list[LongTermFact]) -> list[LongTermFact]:
        try:
            vectors = await self.embedder.embed([query, *(f.content_text for f in facts)])
        except Exception as e:
            logger.warning(f"Embedding failed, keeping keyword ranking: {e}")
            return facts

        query_vec, fact_vecs = vectors[0], vectors[1:]
        scored = [
            (_cosine(query_vec, vec), index, fact)
            for index, (fact, vec) in enumerate(zip(facts, fact_vecs))
        ]
        # Keyword rank breaks similarity ties
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [fact for _, _, fact in scored]

    async def _touch(self, facts: list[LongTermFact]) -> None:
        if not facts:
            return
        now = self._clock()
        ids = [f.id for f in facts]
        placeholders = ", ".join("?" for _ in ids)
        async with self.db.transaction() as conn:
            await conn.execute(
                f"UPDATE long_term_facts SET last_accessed_at = ? WHERE id IN ({placeholders})",
                (now, *ids),
            )
        for fact in facts:
            fact.last_accessed_at = now
