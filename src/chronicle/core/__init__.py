"""
Core module - configuration, shared types, service wiring.

Components:
- config: Settings management via pydantic-settings
- types: Shared data structures (MemoryEvent, WorldState, etc.)
- service: Facade wiring the memory tiers and the cache
- scheduler: Periodic maintenance (compression, cache cleanup)
- logging: Structured logging setup
"""

from chronicle.core.config import Settings
from chronicle.core.types import ContextBundle, MemoryEvent, WorldState

__all__ = ["Settings", "MemoryEvent", "WorldState", "ContextBundle"]
