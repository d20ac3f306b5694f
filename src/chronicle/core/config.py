"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: CHRONICLE_
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHRONICLE_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Storage
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    db_name: str = Field(default="chronicle.db", description="SQLite database name")

    # Volatile store
    redis_enabled: bool = Field(default=True, description="Use Redis as the fast cache tier")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    volatile_timeout_seconds: float = Field(
        default=0.25, description="Per-operation timeout against the volatile store"
    )

    # Generator / summarizer
    anthropic_api_key: str = Field(default="", description="Claude API key")
    default_model: str = Field(default="claude-sonnet-4-20250514", description="Generator model")
    summary_model: str = Field(
        default="claude-3-5-haiku-20241022", description="Model used for summarization"
    )
    summarizer_timeout_seconds: float = Field(
        default=30.0, description="Upper bound for a single summarizer call"
    )

    # Memory
    working_memory_capacity: int = Field(default=10, description="Working memory events per entity")
    episode_age_days: int = Field(default=7, description="Age before events are compressed")
    episode_batch_size: int = Field(default=50, description="Max events folded into one episode")
    episode_min_events: int = Field(default=1, description="Min aged events needed to compress")
    episode_ttl_days: int = Field(default=90, description="Days an episode is kept before cleanup")
    working_memory_ttl_days: int = Field(
        default=30, description="Days a working memory entry is kept before cleanup"
    )
    narrative_summary_max_words: int = Field(default=500, description="Rolling summary word cap")
    narrative_summary_head_words: int = Field(
        default=100, description="Orientation words kept when compacting the summary"
    )

    # Cache TTLs
    response_ttl_hours: float = Field(default=24.0, description="L1 response cache TTL")
    component_ttl_hours: float = Field(default=1.0, description="L3 component cache TTL")

    # Context assembly
    context_working_limit: int = Field(default=10, description="Recent events in context")
    context_episode_limit: int = Field(default=3, description="Episodes in context")
    context_fact_limit: int = Field(default=20, description="Long-term facts in context")
    context_min_importance: float = Field(
        default=0.7, description="Minimum importance for facts in context"
    )

    # Maintenance
    maintenance_interval_minutes: int = Field(
        default=60, description="Interval between background compression runs"
    )

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
