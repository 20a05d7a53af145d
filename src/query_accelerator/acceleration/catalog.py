"""
Materialized View Catalog
Tenant-scoped registry of MV definitions, indexed by query signature.

Validation and not-found errors propagate to the caller. Persistence
failures surface as DatabaseException.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import timedelta
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from query_accelerator.core.exceptions import DatabaseException, NotFoundException, ValidationException
from query_accelerator.core.logging import get_logger
from query_accelerator.data_access.db import session_scope
from query_accelerator.data_access.models import (
    MaterializedViewCreate,
    MaterializedViewRecord,
    MaterializedViewUpdate,
    RefreshStatus,
    utcnow,
)
from query_accelerator.data_access.repositories import MaterializedViewRepository
from query_accelerator.engines.selector import EngineType

from . import signature as signature_module

logger = get_logger(__name__)


def _validation_error(exc: ValidationError) -> ValidationException:
    """Collapse a pydantic error into a ValidationException naming the first bad field."""
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ())) or None
    return ValidationException(
        f"Invalid materialized view input: {first.get('msg')}",
        field=field,
        value=first.get("input"),
    )


def _check_engine_target(engine: EngineType, target_database: str | None) -> None:
    if engine == EngineType.OLAP and not target_database:
        raise ValidationException(
            "target_database is required when engine is olap",
            field="target_database",
        )


class MaterializedViewCatalog:
    """CRUD over the materialized_views table; every call is tenant-scoped."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_refresh_interval_ms: int = 600_000,
    ):
        self.session_factory = session_factory
        self.default_refresh_interval_ms = default_refresh_interval_ms
        self._record_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @staticmethod
    def signature(sql: str) -> str:
        return signature_module.signature(sql)

    def _lock_for(self, view_id: str) -> asyncio.Lock:
        return self._record_locks[view_id]

    def _discard_lock(self, view_id: str) -> None:
        self._record_locks.pop(view_id, None)

    async def create(self, tenant_id: str, data: MaterializedViewCreate | dict[str, Any]) -> MaterializedViewRecord:
        """Validate, fingerprint and persist a new MV definition."""
        if isinstance(data, dict):
            try:
                data = MaterializedViewCreate.model_validate(data)
            except ValidationError as e:
                raise _validation_error(e) from e

        _check_engine_target(data.engine, data.target_database)

        record = MaterializedViewRecord(
            tenant_id=tenant_id,
            name=data.name,
            definition_sql=data.definition_sql,
            normalized_signature=self.signature(data.definition_sql),
            target_table="",
            engine=data.engine,
            target_database=data.target_database if data.engine == EngineType.OLAP else None,
            enabled=data.enabled,
            proposed=data.proposed,
            refresh_interval_ms=data.refresh_interval_ms or self.default_refresh_interval_ms,
        )
        record.target_table = data.target_table or f"mv_{record.id.replace('-', '')}"

        try:
            async with session_scope(self.session_factory) as session:
                await MaterializedViewRepository(session).add(record)
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to create materialized view: {e}") from e

        logger.info(f"Created {record.engine.value} materialized view {record.id} for tenant {tenant_id}")
        return record

    async def get(self, tenant_id: str, view_id: str) -> MaterializedViewRecord:
        try:
            async with session_scope(self.session_factory) as session:
                record = await MaterializedViewRepository(session).get_for_tenant(tenant_id, view_id)
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to load materialized view: {e}") from e
        if record is None:
            raise NotFoundException(
                f"Materialized view {view_id} not found",
                resource="materialized_view",
                identifier=view_id,
            )
        return record

    async def list(
        self,
        tenant_id: str,
        enabled: bool | None = None,
        proposed: bool | None = None,
    ) -> list[MaterializedViewRecord]:
        """List the tenant's MVs; a None filter matches both values."""
        try:
            async with session_scope(self.session_factory) as session:
                return await MaterializedViewRepository(session).list_for_tenant(tenant_id, enabled, proposed)
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to list materialized views: {e}") from e

    async def update(
        self,
        tenant_id: str,
        view_id: str,
        changes: MaterializedViewUpdate | dict[str, Any],
    ) -> MaterializedViewRecord:
        """Merge the supplied fields into an existing record."""
        if isinstance(changes, dict):
            try:
                changes = MaterializedViewUpdate.model_validate(changes)
            except ValidationError as e:
                raise _validation_error(e) from e

        patch = changes.model_dump(exclude_unset=True)

        try:
            record = await self._apply_update(tenant_id, view_id, patch)
        except NotFoundException:
            self._discard_lock(view_id)
            raise

        logger.info(f"Updated materialized view {view_id} for tenant {tenant_id}: {sorted(patch)}")
        return record

    patch = update

    async def _apply_update(self, tenant_id: str, view_id: str, patch: dict[str, Any]) -> MaterializedViewRecord:
        async with self._lock_for(view_id):
            try:
                async with session_scope(self.session_factory) as session:
                    repo = MaterializedViewRepository(session)
                    record = await repo.get_for_tenant(tenant_id, view_id)
                    if record is None:
                        raise NotFoundException(
                            f"Materialized view {view_id} not found",
                            resource="materialized_view",
                            identifier=view_id,
                        )

                    # Nullable keys sent as None clear the value; required ones keep it
                    for key, value in patch.items():
                        if value is None and key != "target_database":
                            continue
                        setattr(record, key, value)

                    _check_engine_target(record.engine, record.target_database)
                    if record.engine == EngineType.OLTP:
                        record.target_database = None
                    if "definition_sql" in patch and patch["definition_sql"] is not None:
                        record.normalized_signature = self.signature(record.definition_sql)
                    record.updated_at = utcnow()
                    await repo.update(record)
            except SQLAlchemyError as e:
                raise DatabaseException(f"Failed to update materialized view: {e}") from e
        return record

    async def delete(self, tenant_id: str, view_id: str) -> None:
        async with self._lock_for(view_id):
            try:
                async with session_scope(self.session_factory) as session:
                    deleted = await MaterializedViewRepository(session).delete_for_tenant(tenant_id, view_id)
            except SQLAlchemyError as e:
                raise DatabaseException(f"Failed to delete materialized view: {e}") from e
        self._discard_lock(view_id)
        if not deleted:
            raise NotFoundException(
                f"Materialized view {view_id} not found",
                resource="materialized_view",
                identifier=view_id,
            )
        logger.info(f"Deleted materialized view {view_id} for tenant {tenant_id}")

    async def mark_refreshed(self, tenant_id: str, view_id: str, status: RefreshStatus | str) -> None:
        """Record a refresh outcome. Status and timestamp are written in one statement."""
        status = RefreshStatus(status)
        async with self._lock_for(view_id):
            try:
                async with session_scope(self.session_factory) as session:
                    found = await MaterializedViewRepository(session).set_refresh_state(
                        tenant_id, view_id, status, utcnow()
                    )
            except SQLAlchemyError as e:
                raise DatabaseException(f"Failed to record refresh state: {e}") from e
        if not found:
            self._discard_lock(view_id)
            raise NotFoundException(
                f"Materialized view {view_id} not found",
                resource="materialized_view",
                identifier=view_id,
            )

    async def find_eligible(
        self,
        tenant_id: str,
        sig: str,
        max_staleness_ms: int = 0,
    ) -> MaterializedViewRecord | None:
        """
        Most recently refreshed enabled MV matching the signature.

        Only successful refreshes qualify; with a non-zero staleness bound the
        refresh must also be recent enough.
        """
        try:
            async with session_scope(self.session_factory) as session:
                candidates = await MaterializedViewRepository(session).list_by_signature(
                    tenant_id, sig, enabled=True
                )
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to look up materialized views: {e}") from e

        now = utcnow()
        cutoff = now - timedelta(milliseconds=max_staleness_ms) if max_staleness_ms else None
        eligible = [
            mv for mv in candidates
            if mv.last_refresh_status == RefreshStatus.SUCCESS
            and mv.last_refreshed_at is not None
            and (cutoff is None or mv.last_refreshed_at >= cutoff)
        ]
        if not eligible:
            return None
        return max(eligible, key=lambda mv: mv.last_refreshed_at)

    async def tenants(self) -> list[str]:
        """Every tenant that owns at least one MV."""
        try:
            async with session_scope(self.session_factory) as session:
                return await MaterializedViewRepository(session).distinct_tenants()
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to list tenants: {e}") from e

    async def approve(self, tenant_id: str, view_id: str) -> MaterializedViewRecord:
        """Promote a proposed MV to an enabled one."""
        return await self.update(tenant_id, view_id, MaterializedViewUpdate(proposed=False, enabled=True))

    async def propose(self, tenant_id: str, candidate: Any) -> MaterializedViewRecord | None:
        """
        Store a detector candidate as a proposed, disabled MV.

        Returns None when the tenant already has an MV with the same signature.
        """
        sig = self.signature(candidate.definition_sql)
        try:
            async with session_scope(self.session_factory) as session:
                existing = await MaterializedViewRepository(session).list_by_signature(tenant_id, sig)
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to look up materialized views: {e}") from e
        if existing:
            logger.debug(f"Skipping proposal {candidate.name}: signature already cataloged")
            return None

        engine = EngineType(candidate.suggested_engine)
        target_database = candidate.target_database
        if engine == EngineType.OLAP and not target_database:
            # Analytical placement needs a database; without one it stays transactional
            engine = EngineType.OLTP
        return await self.create(tenant_id, MaterializedViewCreate(
            name=candidate.name,
            definition_sql=candidate.definition_sql,
            engine=engine,
            target_database=target_database,
            enabled=False,
            proposed=True,
        ))
