"""SQLite durable store shared by the memory tiers and the response cache."""

import asyncio
import json
import sqlite3
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from chronicle.core.logging import get_logger

logger = get_logger("memory.database")


# Python 3.12+ fix: Register datetime adapters explicitly
def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return dt.isoformat()


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

SCHEMA = """
-- Event log: source of truth for compression, archived once folded
CREATE TABLE IF NOT EXISTS narrative_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id INTEGER NOT NULL,
    event_type TEXT NOT NULL,
    description TEXT NOT NULL,
    participants TEXT NOT NULL DEFAULT '[]',  -- JSON array
    stat_deltas TEXT NOT NULL DEFAULT '{}',  -- JSON object
    context TEXT NOT NULL DEFAULT '{}',  -- JSON object
    created_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_entity_time
    ON narrative_events(entity_id, created_at);

-- Working memory: bounded recent window per entity, full detail
CREATE TABLE IF NOT EXISTS working_memory (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id INTEGER NOT NULL,
    event_id INTEGER NOT NULL,
    event_type TEXT NOT NULL,
    description TEXT NOT NULL,
    participants TEXT NOT NULL DEFAULT '[]',
    stat_deltas TEXT NOT NULL DEFAULT '{}',
    context TEXT NOT NULL DEFAULT '{}',
    created_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_working_entity
    ON working_memory(entity_id, id);

-- Episodes: compressed batches of aged events
CREATE TABLE IF NOT EXISTS episode_summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id INTEGER NOT NULL,
    summary_text TEXT NOT NULL,
    event_count INTEGER NOT NULL,
    participants TEXT NOT NULL DEFAULT '[]',
    stat_deltas TEXT NOT NULL DEFAULT '{}',
    period_start DATETIME NOT NULL,
    period_end DATETIME NOT NULL,
    created_at DATETIME NOT NULL,
    expires_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_episodes_entity
    ON episode_summaries(entity_id, period_end);

-- Long-term facts, one row per (entity, text)
CREATE TABLE IF NOT EXISTS long_term_facts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id INTEGER NOT NULL,
    content_text TEXT NOT NULL,
    importance REAL NOT NULL DEFAULT 0.5
        CHECK (importance >= 0 AND importance <= 1),
    created_at DATETIME NOT NULL,
    last_accessed_at DATETIME NOT NULL,
    UNIQUE (entity_id, content_text)
);

-- World state, one row per entity
CREATE TABLE IF NOT EXISTS world_state (
    entity_id INTEGER PRIMARY KEY,
    npc_relationships TEXT NOT NULL DEFAULT '{}',
    unlocked_locations TEXT NOT NULL DEFAULT '[]',
    story_flags TEXT NOT NULL DEFAULT '{}',
    narrative_summary TEXT NOT NULL DEFAULT '',
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);

-- Durable fallback for the L1 response cache
CREATE TABLE IF NOT EXISTS response_cache (
    key_hash TEXT PRIMARY KEY,
    response_data TEXT NOT NULL,  -- JSON payload
    hit_count INTEGER NOT NULL DEFAULT 0,
    last_hit_at DATETIME,
    created_at DATETIME NOT NULL,
    expires_at DATETIME NOT NULL
);
"""

FTS_SCHEMA = """
-- FTS5 index for fact search
CREATE VIRTUAL TABLE IF NOT EXISTS facts_fts USING fts5(
    fact_id UNINDEXED,
    entity_id UNINDEXED,
    content,
    tokenize='porter'
);

-- Triggers to keep FTS in sync
CREATE TRIGGER IF NOT EXISTS facts_ai AFTER INSERT ON long_term_facts BEGIN
    INSERT INTO facts_fts(fact_id, entity_id, content)
    VALUES (new.id, new.entity_id, new.content_text);
END;

CREATE TRIGGER IF NOT EXISTS facts_ad AFTER DELETE ON long_term_facts BEGIN
    DELETE FROM facts_fts WHERE fact_id = old.id;
END;
"""


def dumps(value: Any) -> str:
    """Serialize a JSON column value."""
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


def loads(value: str | None, default: Any) -> Any:
    """Deserialize a JSON column value."""
    if not value:
        return default
    return json.loads(value)


class Database:
    """Shared aiosqlite connection with serialized write transactions."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.fts_enabled = False
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Use detect_types to enable our custom datetime converters
        self._conn = await aiosqlite.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        self._conn.row_factory = aiosqlite.Row
        await self._conn.executescript(SCHEMA)
        try:
            await self._conn.executescript(FTS_SCHEMA)
            self.fts_enabled = True
        except sqlite3.OperationalError as e:
            logger.warning(f"FTS5 unavailable, fact search will use LIKE: {e}")
            self.fts_enabled = False
        await self._conn.commit()
        logger.info(f"Connected to narrative store: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Narrative store not connected. Call connect() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a write sequence atomically.

        Writers share one connection, so only one transaction may be open at
        a time. Commits on success, rolls back and re-raises on failure.
        """
        async with self._write_lock:
            conn = self.conn
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()


class EntityLocks:
    """Per-entity asyncio locks for read-modify-write sequences.

    Operations on different entities never wait on each other. A lock is
    kept only while some task holds or awaits it, so the table does not
    grow with every entity ever touched.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[Any, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def __call__(self, entity_id: Any) -> asyncio.Lock:
        lock = self._locks.get(entity_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[entity_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, entity_id: Any) -> bool:
        return entity_id in self._locks
