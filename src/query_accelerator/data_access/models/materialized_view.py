"""
Materialized view catalog models.
The table model is persisted by the catalog; the create/update models validate caller input.
"""
import re
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import ConfigDict, field_validator
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from query_accelerator.engines.selector import EngineType

IDENTIFIER_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"


class RefreshStatus(str, Enum):
    """Outcome of the most recent refresh."""
    NEVER = "never"
    SUCCESS = "success"
    FAILED = "failed"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQL DATETIME columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_view_id() -> str:
    return str(uuid4())


class MaterializedViewRecord(SQLModel, table=True):
    """A precomputed result set that can stand in for its definition query."""

    __tablename__ = "materialized_views"

    id: str = Field(default_factory=new_view_id, primary_key=True)
    tenant_id: str = Field(index=True)
    name: str
    definition_sql: str
    normalized_signature: str = Field(index=True)
    target_table: str
    engine: EngineType = Field(default=EngineType.OLTP)
    target_database: str | None = None
    enabled: bool = False
    proposed: bool = False
    last_refresh_status: RefreshStatus = Field(default=RefreshStatus.NEVER)
    last_refreshed_at: datetime | None = Field(default=None, sa_type=DateTime)
    refresh_interval_ms: int = 600_000
    # Naive UTC columns; newer SQLModel releases otherwise demand aware values
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def qualified_target(self) -> str:
        """Target table, database-qualified for analytical MVs."""
        if self.engine == EngineType.OLAP and self.target_database:
            return f"{self.target_database}.{self.target_table}"
        return self.target_table

    def freshness_ms(self, now: datetime | None = None) -> int | None:
        """Milliseconds since the last refresh, or None if never refreshed."""
        if self.last_refreshed_at is None:
            return None
        now = now or utcnow()
        return int((now - self.last_refreshed_at).total_seconds() * 1000)

    def is_due(self, now: datetime | None = None) -> bool:
        """Whether the periodic sweep should refresh this view."""
        age = self.freshness_ms(now)
        return age is None or age > self.refresh_interval_ms


class _ViewInputBase(SQLModel):
    model_config = ConfigDict(extra="forbid")

    @field_validator("target_table", "target_database", check_fields=False)
    @classmethod
    def validate_identifier(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not re.match(IDENTIFIER_PATTERN, v):
            raise ValueError(f"not a plain SQL identifier: {v!r}")
        return v


class MaterializedViewCreate(_ViewInputBase):
    """Input accepted by Catalog.create."""

    name: str = Field(min_length=1)
    definition_sql: str = Field(min_length=1)
    engine: EngineType = EngineType.OLTP
    target_database: str | None = None
    target_table: str | None = None
    enabled: bool = False
    proposed: bool = False
    refresh_interval_ms: int | None = Field(default=None, ge=1)


class MaterializedViewUpdate(_ViewInputBase):
    """Partial update accepted by Catalog.update; refresh state is not writable here."""

    name: str | None = Field(default=None, min_length=1)
    definition_sql: str | None = Field(default=None, min_length=1)
    engine: EngineType | None = None
    target_database: str | None = None
    target_table: str | None = None
    enabled: bool | None = None
    proposed: bool | None = None
    refresh_interval_ms: int | None = Field(default=None, ge=1)
