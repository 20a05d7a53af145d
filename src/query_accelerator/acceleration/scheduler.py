"""
MV Refresh Scheduler
One-off and periodic refreshes dispatched to the engine that owns each MV.

Backend failures never escape refresh_once: they are recorded as a failed
refresh on the catalog record and on the observatory counters.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import asdict, dataclass

from query_accelerator.core.config import AccelerationConfig
from query_accelerator.core.exceptions import (
    BackendException,
    BackendTimeoutException,
    CrossEngineDisabledException,
    NotFoundException,
)
from query_accelerator.core.logging import get_logger, get_logger_with_context
from query_accelerator.data_access.models import MaterializedViewRecord, RefreshStatus
from query_accelerator.engines.backends import AnalyticalBackend, EngineBackend
from query_accelerator.engines.selector import EngineType
from query_accelerator.monitoring.metrics import PerformanceObservatory

from .catalog import MaterializedViewCatalog

logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Summary of one pass over the catalog."""
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class MaterializedViewScheduler:
    """Refreshes MVs on demand and, when enabled, on a fixed interval."""

    def __init__(
        self,
        catalog: MaterializedViewCatalog,
        oltp_backend: EngineBackend,
        olap_backend: AnalyticalBackend | None,
        observatory: PerformanceObservatory,
        config: AccelerationConfig,
    ):
        self.catalog = catalog
        self.oltp_backend = oltp_backend
        self.olap_backend = olap_backend
        self.observatory = observatory
        self.config = config

        self.refresh_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def discard_lock(self, view_id: str) -> None:
        """Forget the refresh lock of a deleted MV."""
        self.refresh_locks.pop(view_id, None)

    async def _dispatch(self, view: MaterializedViewRecord) -> None:
        """Run the engine-specific refresh primitive; raises on any failure."""
        timeout_ms = self.config.refresh_timeout_ms
        if view.engine == EngineType.OLAP:
            if not self.config.cross_engine_enabled:
                raise CrossEngineDisabledException(f"Refusing olap refresh of {view.id}: cross-engine disabled")
            if self.olap_backend is None:
                raise CrossEngineDisabledException(f"Refusing olap refresh of {view.id}: no analytical backend")
            ok = await self.olap_backend.refresh_materialized_view(view.target_database, view, timeout_ms)
            if not ok:
                raise BackendException(f"Analytical refresh of {view.id} reported failure", engine="olap")
            return
        await self.oltp_backend.refresh(view, timeout_ms)

    async def refresh_once(self, tenant_id: str, view_id: str) -> RefreshStatus:
        """
        Refresh a single MV.

        Returns SUCCESS or FAILED. Only NotFoundException escapes, and it is
        raised before any backend call.
        """
        view = await self.catalog.get(tenant_id, view_id)
        log = get_logger_with_context(__name__, tenant_id=tenant_id, mv_id=view_id, engine=view.engine.value)

        async with self.refresh_locks[view_id]:
            try:
                await self._dispatch(view)
                status = RefreshStatus.SUCCESS
            except CrossEngineDisabledException as e:
                log.warning(f"Refresh of MV {view_id} skipped: {e.message}")
                status = RefreshStatus.FAILED
            except BackendTimeoutException as e:
                log.error(f"Refresh of MV {view_id} on {view.engine.value} timed out: {e.message}")
                status = RefreshStatus.FAILED
            except Exception as e:
                log.error(f"Refresh of MV {view_id} on {view.engine.value} failed: {e}")
                status = RefreshStatus.FAILED

            self.observatory.record_refresh(view.engine, status == RefreshStatus.SUCCESS)
            try:
                await self.catalog.mark_refreshed(tenant_id, view_id, status)
            except NotFoundException:
                # Deleted while refreshing
                self.discard_lock(view_id)
                raise

        if status == RefreshStatus.SUCCESS:
            log.info(f"Refreshed MV {view_id} on {view.engine.value}")
        return status

    async def _sweep_tenants(self) -> list[str]:
        if self.config.scheduler_tenants:
            return list(self.config.scheduler_tenants)
        return await self.catalog.tenants()

    async def run_sweep(self) -> SweepResult:
        """Refresh every enabled MV that is due, isolating failures per MV."""
        result = SweepResult()
        due: list[MaterializedViewRecord] = []
        for tenant_id in await self._sweep_tenants():
            for view in await self.catalog.list(tenant_id, enabled=True):
                if view.is_due():
                    due.append(view)

        if not due:
            return result

        semaphore = asyncio.Semaphore(self.config.max_concurrent_refreshes)

        async def refresh_with_semaphore(view: MaterializedViewRecord) -> RefreshStatus:
            async with semaphore:
                return await self.refresh_once(view.tenant_id, view.id)

        outcomes = await asyncio.gather(
            *(refresh_with_semaphore(view) for view in due),
            return_exceptions=True,
        )

        for view, outcome in zip(due, outcomes):
            result.attempted += 1
            if outcome == RefreshStatus.SUCCESS:
                result.succeeded += 1
            else:
                result.failed += 1
                if isinstance(outcome, NotFoundException):
                    logger.debug(f"MV {view.id} deleted during sweep")
                elif isinstance(outcome, BaseException):
                    logger.error(f"Sweep refresh of MV {view.id} raised: {outcome}")

        logger.info(
            f"MV sweep finished: {result.attempted} attempted, "
            f"{result.succeeded} succeeded, {result.failed} failed"
        )
        return result

    async def _loop(self) -> None:
        interval = self.config.scheduler_interval_ms / 1000
        while self._running:
            try:
                await self.run_sweep()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"MV scheduler error: {e}")
                await asyncio.sleep(interval)

    def start(self) -> bool:
        """Start the periodic sweep. Returns False when auto-refresh is off."""
        if not self.config.auto_refresh_enabled:
            logger.info("MV auto-refresh disabled; scheduler not started")
            return False
        if self.running:
            return True
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"MV scheduler started (interval {self.config.scheduler_interval_ms}ms)")
        return True

    async def stop(self) -> None:
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("MV scheduler stopped")
