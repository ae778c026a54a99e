"""Configuration models and loading utilities for the market sync engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta

import structlog
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)


class DatabaseSettings(BaseSettings):
    """Runtime configuration for the relational store."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = Field(
        "sqlite+aiosqlite:///./marketsync.db",
        description="SQLAlchemy async DSN (asyncpg for Postgres, aiosqlite locally).",
    )
    echo: bool = Field(False, description="Echo SQL statements to the log.")


class UpstreamSettings(BaseSettings):
    """Listings API connectivity and pagination policy."""

    model_config = SettingsConfigDict(env_prefix="GAMMA_")

    base_url: str = Field(
        "https://gamma-api.polymarket.com",
        description="Polymarket Gamma API base URL.",
    )
    timeout_seconds: float = Field(15.0, description="Per-request timeout for listing pages.")
    page_size: int = Field(500, description="Records requested per page (upstream caps at 500).")
    max_pages: int = Field(10, description="Hard ceiling on pages fetched in one pass.")
    max_records: int = Field(5000, description="Hard ceiling on records fetched in one pass.")
    retry_attempts: int = Field(3, description="Attempts per page before the page is treated as failed.")
    min_liquidity: float = Field(1000.0, description="Liquidity floor applied upstream and after mapping.")
    min_volume: float = Field(100.0, description="Volume floor sent upstream with each page request.")


class SyncPolicySettings(BaseSettings):
    """Scheduling cadence and reconciliation windows."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    interval_seconds: int = Field(24 * 60 * 60, description="Seconds between scheduled passes.")
    startup_delay_seconds: float = Field(
        5.0,
        description="Delay before the startup pass so dependent infrastructure can initialize.",
    )
    on_startup: bool = Field(True, description="Run a pass shortly after process start.")
    acceptance_grace_hours: float = Field(
        24.0,
        description="Markets whose end date is further in the past than this are rejected.",
    )
    retention_days: float = Field(30.0, description="Markets ended longer ago than this are purged.")
    mark_offset_seconds: float = Field(
        1.0,
        description="How far before pass start the mark-for-review step backdates last_synced_at.",
    )

    @property
    def interval(self) -> timedelta:
        return timedelta(seconds=self.interval_seconds)

    @property
    def acceptance_grace(self) -> timedelta:
        return timedelta(hours=self.acceptance_grace_hours)

    @property
    def retention_window(self) -> timedelta:
        return timedelta(days=self.retention_days)

    @property
    def mark_offset(self) -> timedelta:
        return timedelta(seconds=self.mark_offset_seconds)


@dataclass(slots=True)
class Settings:
    """Aggregated application settings loaded from environment variables."""

    database: DatabaseSettings
    upstream: UpstreamSettings
    sync: SyncPolicySettings
    log_level: str = "INFO"
    log_json: bool = True
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> Settings:
        """Hydrate the composed settings model from environment variables."""

        load_dotenv(override=False)

        database = DatabaseSettings()
        upstream = UpstreamSettings()
        sync = SyncPolicySettings()

        if upstream.page_size > 500:
            logger.warning(
                "page_size_above_upstream_cap",
                requested=upstream.page_size,
                applied=500,
            )
            upstream = upstream.model_copy(update={"page_size": 500})

        log_level = os.getenv("LOG_LEVEL", "INFO")
        log_json = os.getenv("LOG_JSON", "true").lower() in {"1", "true", "yes", "on"}

        allowed_origins_raw = os.getenv("ALLOWED_ORIGINS", "*")
        allowed_origins = [
            origin.strip()
            for origin in allowed_origins_raw.split(",")
            if origin.strip()
        ]
        if not allowed_origins:
            allowed_origins = ["*"]

        return cls(
            database=database,
            upstream=upstream,
            sync=sync,
            log_level=log_level,
            log_json=log_json,
            allowed_origins=allowed_origins,
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


__all__ = [
    "DatabaseSettings",
    "Settings",
    "SyncPolicySettings",
    "UpstreamSettings",
    "get_settings",
]
