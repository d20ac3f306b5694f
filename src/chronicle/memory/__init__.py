"""
Memory module - hierarchical narrative memory.

Layers:
- working: last few events per entity, full detail
- episodes: compressed summaries of aged events
- long_term: importance-ranked facts, kept indefinitely
- world: merged per-entity state (relationships, locations, flags)
- summary: rolling bounded "story so far"
- context: all of the above in one bundle

Storage: SQLite via aiosqlite
"""
