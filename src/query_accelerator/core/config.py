"""
Centralized configuration management using Pydantic BaseSettings.
Feature toggles are frozen into an AccelerationConfig that components receive at construction.
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Environment types for the application."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class Settings(BaseSettings):
    """
    Application settings read from the environment (and an optional .env file).
    Boolean toggles accept the string-encoded values "true"/"false".
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Current environment (development, staging, production, testing)",
    )

    # Catalog store
    database_url: str = Field(
        default="sqlite:///./data/query_accelerator.db",
        description="Catalog database connection URL",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Application log level",
    )
    log_format: str = Field(
        default="text",
        description="Log format (json/text)",
    )
    log_file_path: Path | None = Field(
        default=None,
        description="Optional log file path",
    )

    # Feature toggles
    mv_enable: bool = Field(
        default=False,
        description="Master switch for materialized view acceleration",
    )
    mv_rewrite_enable: bool = Field(
        default=False,
        description="Allow query rewrites onto materialized views",
    )
    mv_cross_engine_enable: bool = Field(
        default=False,
        description="Allow serving and refreshing MVs owned by the analytical engine",
    )
    mv_auto_refresh_enable: bool = Field(
        default=False,
        description="Run the periodic refresh sweep",
    )
    mv_auto_detect_enable: bool = Field(
        default=False,
        description="Propose MV candidates from the slow-query workload",
    )

    # Materialized view tunables
    mv_max_staleness_ms: int = Field(
        default=600_000,
        description="Maximum age of an MV refresh usable by rewrite (0 disables the check)",
        ge=0,
    )
    mv_scheduler_interval_ms: int = Field(
        default=60_000,
        description="Interval between refresh sweeps",
        ge=1,
    )
    mv_refresh_timeout_ms: int = Field(
        default=30_000,
        description="Timeout applied to a single backend refresh call",
        ge=1,
    )
    mv_max_concurrent_refreshes: int = Field(
        default=3,
        description="Refreshes allowed to run concurrently within a sweep",
        ge=1,
    )
    mv_default_refresh_interval_ms: int = Field(
        default=600_000,
        description="Refresh cadence assigned to new MVs",
        ge=1,
    )
    mv_detect_min_occurrences: int = Field(
        default=2,
        description="Occurrences of a slow query before it becomes an MV candidate",
        ge=1,
    )
    scheduler_tenants: str = Field(
        default="",
        description="Comma separated tenants swept by the scheduler (empty means all)",
    )

    # Query path
    query_timeout_ms: int = Field(
        default=30_000,
        description="Default timeout for query execution",
        ge=1,
    )
    slow_query_threshold_ms: float = Field(
        default=500.0,
        description="Duration at which a query counts as slow",
        ge=0,
    )
    slow_query_retention_ms: int = Field(
        default=3_600_000,
        description="Horizon after which query samples are evicted",
        ge=1,
    )
    slow_query_max_samples: int = Field(
        default=1000,
        description="Maximum number of retained query samples",
        ge=1,
    )

    # ClickHouse (analytical engine)
    clickhouse_enable: bool = Field(
        default=False,
        description="Enable the ClickHouse analytical backend",
    )
    clickhouse_host: str = Field(
        default="localhost",
        description="ClickHouse host",
    )
    clickhouse_port: int = Field(
        default=9000,
        description="ClickHouse native protocol port",
    )
    clickhouse_user: str = Field(
        default="default",
        description="ClickHouse user",
    )
    clickhouse_password: str = Field(
        default="",
        description="ClickHouse password",
    )
    clickhouse_database: str = Field(
        default="default",
        description="ClickHouse default database",
    )

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format value."""
        if v.lower() not in ("json", "text"):
            raise ValueError(f"Invalid log format: {v}")
        return v.lower()

    @computed_field
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def scheduler_tenant_list(self) -> list[str]:
        """Tenants named in SCHEDULER_TENANTS."""
        return [t.strip() for t in self.scheduler_tenants.split(",") if t.strip()]

    @property
    def clickhouse_config(self) -> dict[str, Any]:
        """Get ClickHouse connection settings as dictionary."""
        return {
            "host": self.clickhouse_host,
            "port": self.clickhouse_port,
            "user": self.clickhouse_user,
            "password": self.clickhouse_password,
            "database": self.clickhouse_database,
        }

    def get_database_url(self, async_mode: bool = False) -> str:
        """Get database URL with support for async drivers."""
        url = self.database_url
        if not async_mode:
            return url
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


@dataclass(frozen=True)
class AccelerationConfig:
    """Immutable feature toggles and tunables handed to each acceleration component."""

    mv_enabled: bool = False
    rewrite_enabled: bool = False
    cross_engine_enabled: bool = False
    auto_refresh_enabled: bool = False
    auto_detect_enabled: bool = False
    max_staleness_ms: int = 600_000
    scheduler_interval_ms: int = 60_000
    refresh_timeout_ms: int = 30_000
    max_concurrent_refreshes: int = 3
    default_refresh_interval_ms: int = 600_000
    detect_min_occurrences: int = 2
    scheduler_tenants: tuple[str, ...] = ()

    @property
    def rewrite_active(self) -> bool:
        return self.mv_enabled and self.rewrite_enabled

    @classmethod
    def from_settings(cls, settings: Settings) -> "AccelerationConfig":
        return cls(
            mv_enabled=settings.mv_enable,
            rewrite_enabled=settings.mv_rewrite_enable,
            cross_engine_enabled=settings.mv_cross_engine_enable,
            auto_refresh_enabled=settings.mv_auto_refresh_enable,
            auto_detect_enabled=settings.mv_auto_detect_enable,
            max_staleness_ms=settings.mv_max_staleness_ms,
            scheduler_interval_ms=settings.mv_scheduler_interval_ms,
            refresh_timeout_ms=settings.mv_refresh_timeout_ms,
            max_concurrent_refreshes=settings.mv_max_concurrent_refreshes,
            default_refresh_interval_ms=settings.mv_default_refresh_interval_ms,
            detect_min_occurrences=settings.mv_detect_min_occurrences,
            scheduler_tenants=tuple(settings.scheduler_tenant_list),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reset_settings() -> None:
    """Clear cached settings (useful in tests when env vars change)."""
    get_settings.cache_clear()


settings = get_settings()
