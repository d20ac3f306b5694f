"""
Shared type definitions.

Narrative memory records passed between the stores, the cache and callers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from chronicle.core.typing import JSONDict, StatDeltas


@dataclass(frozen=True)
class MemoryEvent:
    """A single narrative occurrence, immutable once written."""

    event_type: str
    description: str
    participants: frozenset[str] = frozenset()
    stat_deltas: StatDeltas = field(default_factory=dict)
    context: JSONDict = field(default_factory=dict)
    entity_id: int | None = None
    id: int | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        # Accept any iterable of names from callers
        if not isinstance(self.participants, frozenset):
            object.__setattr__(self, "participants", frozenset(self.participants))

    def to_dict(self) -> JSONDict:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "event_type": self.event_type,
            "description": self.description,
            "participants": sorted(self.participants),
            "stat_deltas": dict(self.stat_deltas),
            "context": dict(self.context),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class EpisodeSummary:
    """Compressed replacement for a batch of aged events."""

    entity_id: int
    summary_text: str
    event_count: int
    participants_involved: frozenset[str]
    total_stat_deltas: StatDeltas
    period_start: datetime
    period_end: datetime
    created_at: datetime
    expires_at: datetime | None = None
    id: int | None = None

    def to_dict(self) -> JSONDict:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "summary_text": self.summary_text,
            "event_count": self.event_count,
            "participants_involved": sorted(self.participants_involved),
            "total_stat_deltas": dict(self.total_stat_deltas),
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class LongTermFact:
    """Durable, importance-ranked statement about an entity's story."""

    entity_id: int
    content_text: str
    importance_score: float
    created_at: datetime
    last_accessed_at: datetime
    id: int | None = None

    def to_dict(self) -> JSONDict:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "content_text": self.content_text,
            "importance_score": self.importance_score,
            "created_at": self.created_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat(),
        }


@dataclass
class WorldState:
    """Merged, per-entity mutable narrative state."""

    entity_id: int
    npc_relationships: JSONDict = field(default_factory=dict)
    unlocked_locations: set[str] = field(default_factory=set)
    story_flags: JSONDict = field(default_factory=dict)
    narrative_summary: str = ""
    updated_at: datetime | None = None

    def to_dict(self) -> JSONDict:
        return {
            "entity_id": self.entity_id,
            "npc_relationships": self.npc_relationships,
            "unlocked_locations": sorted(self.unlocked_locations),
            "story_flags": self.story_flags,
            "narrative_summary": self.narrative_summary,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class ContextBundle:
    """Everything a generation request needs to stay consistent."""

    working_memory: list[MemoryEvent]
    episode_summaries: list[EpisodeSummary]
    long_term_facts: list[LongTermFact]
    world_state: WorldState
    narrative_summary: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "working_memory": [e.to_dict() for e in self.working_memory],
            "episode_summaries": [e.to_dict() for e in self.episode_summaries],
            "long_term_facts": [f.to_dict() for f in self.long_term_facts],
            "world_state": self.world_state.to_dict(),
            "narrative_summary": self.narrative_summary,
        }
