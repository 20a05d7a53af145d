"""
Materialized view repository.
Every query is partitioned by tenant; there is no cross-tenant read besides tenant discovery.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from query_accelerator.data_access.models import MaterializedViewRecord, RefreshStatus

from .base_repository import AsyncSQLModelRepository, BaseSpecification


class TenantSpecification(BaseSpecification):
    """Restrict to a single tenant's records."""

    def __init__(self, tenant_id: str):
        super().__init__([MaterializedViewRecord.tenant_id == tenant_id])


class ViewFlagsSpecification(BaseSpecification):
    """Filter on the enabled / proposed flags; None leaves a flag unfiltered."""

    def __init__(self, enabled: bool | None = None, proposed: bool | None = None):
        conditions = []
        if enabled is not None:
            conditions.append(MaterializedViewRecord.enabled == enabled)
        if proposed is not None:
            conditions.append(MaterializedViewRecord.proposed == proposed)
        super().__init__(conditions)


class SignatureSpecification(BaseSpecification):
    def __init__(self, signature: str):
        super().__init__([MaterializedViewRecord.normalized_signature == signature])


class MaterializedViewRepository(AsyncSQLModelRepository[MaterializedViewRecord]):
    """Tenant-scoped access to the materialized_views table."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, MaterializedViewRecord)

    async def get_for_tenant(self, tenant_id: str, view_id: str) -> MaterializedViewRecord | None:
        stmt = select(MaterializedViewRecord).where(
            MaterializedViewRecord.id == view_id,
            MaterializedViewRecord.tenant_id == tenant_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_tenant(
        self,
        tenant_id: str,
        enabled: bool | None = None,
        proposed: bool | None = None,
    ) -> list[MaterializedViewRecord]:
        spec = TenantSpecification(tenant_id).and_(ViewFlagsSpecification(enabled, proposed))
        return await self.list(spec)

    async def list_by_signature(self, tenant_id: str, signature: str,
                                enabled: bool | None = None) -> list[MaterializedViewRecord]:
        spec = (
            TenantSpecification(tenant_id)
            .and_(SignatureSpecification(signature))
            .and_(ViewFlagsSpecification(enabled=enabled))
        )
        return await self.list(spec)

    async def delete_for_tenant(self, tenant_id: str, view_id: str) -> bool:
        record = await self.get_for_tenant(tenant_id, view_id)
        if record is None:
            return False
        await self.session.delete(record)
        await self.session.flush()
        return True

    async def set_refresh_state(
        self,
        tenant_id: str,
        view_id: str,
        status: RefreshStatus,
        refreshed_at: datetime,
    ) -> bool:
        """Write status and timestamp in one UPDATE so they never diverge."""
        stmt = (
            update(MaterializedViewRecord)
            .where(
                MaterializedViewRecord.id == view_id,
                MaterializedViewRecord.tenant_id == tenant_id,
            )
            .values(
                last_refresh_status=status,
                last_refreshed_at=refreshed_at,
                updated_at=refreshed_at,
            )
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def distinct_tenants(self) -> list[str]:
        stmt = select(MaterializedViewRecord.tenant_id).distinct()
        result = await self.session.execute(stmt)
        return sorted(result.scalars().all())
