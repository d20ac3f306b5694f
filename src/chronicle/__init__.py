"""
Chronicle - narrative memory and response caching for long-running stories.

Package structure:
- core: Service facade, config, common types
- memory: Memory hierarchy and persistence
- cache: Multi-tier response cache
- llm: Generator and summarizer collaborators
"""

__version__ = "0.1.0"
