"""Pydantic-settings configuration for the DEX rollup engine.

Loads database parameters and the rollup tuning knobs (hot retention,
dedup window, flush retry policy) from the .env file with defaults that
suit local development. The hot retention horizon and the rolling window
list are deliberately independent: long windows are served from persisted
history, never from the hot set.
"""

from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Project
    project_name: str = "DEX Rollup"
    debug: bool = False

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "dex_indexer"
    postgres_user: str = "indexer"
    postgres_password: str = ""

    # SQLAlchemy pool settings
    db_pool_size: int = 5
    db_pool_pre_ping: bool = True
    db_sslmode: str = "prefer"  # Set to "require" in production

    # Volume snapshot store
    hot_retention_hours: int = 24
    history_lookback_hours: int = 24 * 365

    # Applied-event tracking (redelivery protection)
    applied_event_window_blocks: int = 10_000
    applied_event_max_entries: int = 200_000

    # Price snapshots
    price_snapshot_cadence: Literal["block", "hourly"] = "block"

    # Flush retry policy
    flush_max_attempts: int = 5
    flush_deadline_seconds: float = 30.0
    flush_backoff_initial_seconds: float = 0.5
    flush_backoff_max_seconds: float = 10.0
    flush_backoff_jitter_seconds: float = 1.0

    # Bounded backlog of unflushed blocks
    max_unflushed_blocks: int = 50
    backlog_flush_deadline_seconds: float = 300.0

    @computed_field
    @property
    def sync_database_url(self) -> str:
        """Sync connection string for psycopg2 (runtime and Alembic)."""
        base = (
            f"postgresql+psycopg2://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        if self.db_sslmode and self.db_sslmode != "disable":
            return f"{base}?sslmode={self.db_sslmode}"
        return base


# Singleton instance
settings = Settings()
