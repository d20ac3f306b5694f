"""
Cache module - best-effort caching of expensive generator calls.

Components:
- keys: deterministic request hashing
- stats: process-wide hit/miss/error counters
- volatile: fast key-value store interface (Redis)
- tiers: volatile and durable L1 tiers plus the fallback decorator
- response_cache: L1/L3 cache used by callers
"""

from chronicle.cache.response_cache import ResponseCache
from chronicle.cache.stats import CacheStatistics
from chronicle.cache.volatile import RedisVolatileStore, VolatileStore

__all__ = ["ResponseCache", "CacheStatistics", "VolatileStore", "RedisVolatileStore"]
