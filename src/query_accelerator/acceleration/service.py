"""
Query Accelerator
Wires catalog, backends, rewriter, scheduler, detector and observatory together
and exposes the query path plus every acceleration operation to callers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from clickhouse_driver import Client
from sqlalchemy.ext.asyncio import AsyncEngine

from query_accelerator.core.config import AccelerationConfig, Settings, get_settings
from query_accelerator.core.logging import get_logger
from query_accelerator.data_access.db import create_session_factory, engine_from_settings, init_catalog_schema
from query_accelerator.data_access.models import (
    MaterializedViewCreate,
    MaterializedViewRecord,
    MaterializedViewUpdate,
    RefreshStatus,
)
from query_accelerator.engines.backends import AnalyticalBackend, EngineBackend, TransactionalBackend
from query_accelerator.engines.selector import EngineType, choose_engine
from query_accelerator.monitoring.metrics import PerformanceObservatory

from .catalog import MaterializedViewCatalog
from .detector import DEFAULT_WINDOW_MS, MaterializedViewCandidate, WorkloadDetector
from .rewrite import MaterializedViewRewriter, RewriteResult
from .scheduler import MaterializedViewScheduler, SweepResult
from .signature import signature

logger = get_logger(__name__)


@dataclass
class QueryResult:
    rows: list[dict[str, Any]]
    engine: EngineType
    duration_ms: float
    rewrite: RewriteResult = field(default_factory=lambda: RewriteResult(used=False))

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": self.rows,
            "engine": self.engine.value,
            "duration_ms": self.duration_ms,
            "rewrite": self.rewrite.to_dict(),
        }


class QueryAccelerator:
    """Entry point for callers that route, accelerate and observe SQL."""

    def __init__(
        self,
        config: AccelerationConfig,
        catalog: MaterializedViewCatalog,
        observatory: PerformanceObservatory,
        oltp_backend: EngineBackend,
        olap_backend: AnalyticalBackend | None = None,
        query_timeout_ms: int = 30_000,
        detector_target_database: str | None = None,
    ):
        self.config = config
        self.catalog = catalog
        self.observatory = observatory
        self.oltp_backend = oltp_backend
        self.olap_backend = olap_backend
        self.query_timeout_ms = query_timeout_ms

        self.rewriter = MaterializedViewRewriter(
            catalog, config, observatory, olap_available=olap_backend is not None
        )
        self.scheduler = MaterializedViewScheduler(catalog, oltp_backend, olap_backend, observatory, config)
        self.detector = WorkloadDetector(observatory, config, target_database=detector_target_database)

    # Query path

    def choose_engine(self, sql: str, prefer_olap: bool = False) -> EngineType:
        return choose_engine(sql, prefer_olap)

    async def try_rewrite_with_mv(self, tenant_id: str, sql: str) -> RewriteResult:
        return await self.rewriter.try_rewrite_with_mv(tenant_id, sql)

    def _backend_for(self, engine: EngineType) -> EngineBackend:
        if engine == EngineType.OLAP and self.olap_backend is not None:
            return self.olap_backend
        return self.oltp_backend

    async def execute(
        self,
        tenant_id: str,
        sql: str,
        params: dict[str, Any] | None = None,
        prefer_olap: bool = False,
        timeout_ms: int | None = None,
    ) -> QueryResult:
        """
        Run a statement, through an MV when one is eligible.

        A rewritten statement runs on the engine that holds the MV; routing
        and prefer_olap only apply to unrewritten statements. Analytical
        routing falls back to the transactional engine when no analytical
        backend is configured. Backend errors propagate.
        """
        rewrite = await self.try_rewrite_with_mv(tenant_id, sql)
        if rewrite.used:
            statement = rewrite.sql
            # The MV already holds the computed result
            params = None
            backend = self._backend_for(rewrite.engine)
        else:
            statement = sql
            backend = self._backend_for(choose_engine(statement, prefer_olap))
        engine = backend.engine_type

        start = time.perf_counter()
        rows = await backend.execute(statement, params, timeout_ms or self.query_timeout_ms)
        duration_ms = (time.perf_counter() - start) * 1000

        self.observatory.record_query(sql, duration_ms, engine=engine, tenant_id=tenant_id)
        return QueryResult(rows=rows, engine=engine, duration_ms=duration_ms, rewrite=rewrite)

    # Catalog

    def signature(self, sql: str) -> str:
        return signature(sql)

    async def create_mv(self, tenant_id: str, data: MaterializedViewCreate | dict[str, Any]) -> MaterializedViewRecord:
        return await self.catalog.create(tenant_id, data)

    async def get_mv(self, tenant_id: str, view_id: str) -> MaterializedViewRecord:
        return await self.catalog.get(tenant_id, view_id)

    async def list_mvs(self, tenant_id: str, enabled: bool | None = None,
                       proposed: bool | None = None) -> list[MaterializedViewRecord]:
        return await self.catalog.list(tenant_id, enabled=enabled, proposed=proposed)

    async def update_mv(self, tenant_id: str, view_id: str,
                        changes: MaterializedViewUpdate | dict[str, Any]) -> MaterializedViewRecord:
        return await self.catalog.update(tenant_id, view_id, changes)

    async def delete_mv(self, tenant_id: str, view_id: str) -> None:
        await self.catalog.delete(tenant_id, view_id)
        self.scheduler.discard_lock(view_id)

    async def approve_mv(self, tenant_id: str, view_id: str) -> MaterializedViewRecord:
        return await self.catalog.approve(tenant_id, view_id)

    # Refresh

    async def refresh_once(self, tenant_id: str, view_id: str) -> RefreshStatus:
        return await self.scheduler.refresh_once(tenant_id, view_id)

    async def run_sweep(self) -> SweepResult:
        return await self.scheduler.run_sweep()

    def start_mv_scheduler(self) -> bool:
        return self.scheduler.start()

    async def stop_mv_scheduler(self) -> None:
        await self.scheduler.stop()

    # Detection

    def suggest_from_recent_workload(self, tenant_id: str,
                                     since_ms: int = DEFAULT_WINDOW_MS) -> list[MaterializedViewCandidate]:
        return self.detector.suggest_from_recent_workload(tenant_id, since_ms)

    async def propose_from_recent_workload(self, tenant_id: str,
                                           since_ms: int = DEFAULT_WINDOW_MS) -> list[MaterializedViewRecord]:
        """Detect candidates and store the new ones as proposed MVs."""
        proposed = []
        for candidate in self.suggest_from_recent_workload(tenant_id, since_ms):
            record = await self.catalog.propose(tenant_id, candidate)
            if record is not None:
                proposed.append(record)
        if proposed:
            self.record_suggested(len(proposed))
        return proposed

    def record_suggested(self, n: int = 1) -> None:
        self.detector.record_suggested(n)

    def mv_stats(self) -> dict[str, Any]:
        return self.observatory.mv_stats()

    async def close(self) -> None:
        await self.stop_mv_scheduler()
        if self.olap_backend is not None:
            await self.olap_backend.close()
        await self.oltp_backend.close()


async def create_query_accelerator(
    settings: Settings | None = None,
    catalog_engine: AsyncEngine | None = None,
    olap_client: Client | None = None,
    observatory: PerformanceObservatory | None = None,
) -> QueryAccelerator:
    """
    Build a QueryAccelerator from settings.

    The catalog and the transactional engine share DATABASE_URL. An
    analytical backend is attached only when CLICKHOUSE_ENABLE is set or a
    client is passed in.
    """
    settings = settings or get_settings()
    config = AccelerationConfig.from_settings(settings)

    engine = catalog_engine or engine_from_settings(settings)
    await init_catalog_schema(engine)
    catalog = MaterializedViewCatalog(
        create_session_factory(engine),
        default_refresh_interval_ms=config.default_refresh_interval_ms,
    )

    olap_backend = None
    if olap_client is not None:
        olap_backend = AnalyticalBackend(olap_client)
    elif settings.clickhouse_enable:
        olap_backend = AnalyticalBackend.from_config(**settings.clickhouse_config)

    observatory = observatory or PerformanceObservatory(
        slow_threshold_ms=settings.slow_query_threshold_ms,
        retention_ms=settings.slow_query_retention_ms,
        max_samples=settings.slow_query_max_samples,
    )

    logger.info(
        f"Query accelerator ready (mv={config.mv_enabled}, rewrite={config.rewrite_enabled}, "
        f"cross_engine={config.cross_engine_enabled}, olap_backend={olap_backend is not None})"
    )
    return QueryAccelerator(
        config=config,
        catalog=catalog,
        observatory=observatory,
        oltp_backend=TransactionalBackend(engine),
        olap_backend=olap_backend,
        query_timeout_ms=settings.query_timeout_ms,
        detector_target_database=settings.clickhouse_database if olap_backend is not None else None,
    )
