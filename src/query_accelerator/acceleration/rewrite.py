"""
MV Rewrite Engine
Decides whether a cataloged, freshly refreshed MV can answer a request.

Every decision is non-fatal: anything other than a usable match returns a
bypass result and the request runs unaccelerated.
"""

from dataclasses import dataclass
from enum import Enum

from query_accelerator.core.config import AccelerationConfig
from query_accelerator.core.exceptions import DatabaseException
from query_accelerator.core.logging import get_logger
from query_accelerator.data_access.models import MaterializedViewRecord
from query_accelerator.engines.selector import OLAP_HINT, EngineType, choose_engine
from query_accelerator.monitoring.metrics import PerformanceObservatory

from .catalog import MaterializedViewCatalog
from .signature import signature

logger = get_logger(__name__)


class RewriteReason(str, Enum):
    """Why a rewrite was not applied."""
    DISABLED = "disabled"
    NO_MATCH = "no_match"
    CROSS_ENGINE_DISABLED = "cross_engine_disabled"
    LOOKUP_ERROR = "lookup_error"
    OLAP_UNAVAILABLE = "olap_unavailable"


@dataclass
class RewriteResult:
    used: bool
    sql: str | None = None
    engine: EngineType | None = None
    reason: RewriteReason | None = None
    mv_id: str | None = None
    freshness_ms: int | None = None

    def to_dict(self) -> dict:
        return {
            "used": self.used,
            "sql": self.sql,
            "engine": self.engine.value if self.engine else None,
            "reason": self.reason.value if self.reason else None,
            "mv_id": self.mv_id,
            "freshness_ms": self.freshness_ms,
        }


def build_rewritten_sql(mv: MaterializedViewRecord) -> str:
    """Statement reading the MV's stored result; olap MVs carry the routing hint."""
    if mv.engine == EngineType.OLAP:
        return f"{OLAP_HINT} SELECT * FROM {mv.qualified_target}"
    return f"SELECT * FROM {mv.target_table}"


class MaterializedViewRewriter:
    """Signature lookup plus cross-engine policy."""

    def __init__(
        self,
        catalog: MaterializedViewCatalog,
        config: AccelerationConfig,
        observatory: PerformanceObservatory,
        olap_available: bool = True,
    ):
        self.catalog = catalog
        self.config = config
        self.observatory = observatory
        self.olap_available = olap_available

    def _bypass(self, sql: str, reason: RewriteReason, engine: EngineType | None = None) -> RewriteResult:
        counted_engine = engine or choose_engine(sql)
        self.observatory.record_rewrite(counted_engine, used=False, reason=reason.value)
        logger.debug(f"Rewrite bypassed ({reason.value}) on {counted_engine.value}")
        return RewriteResult(used=False, reason=reason)

    async def try_rewrite_with_mv(self, tenant_id: str, sql: str) -> RewriteResult:
        if not self.config.rewrite_active:
            return self._bypass(sql, RewriteReason.DISABLED)

        sig = signature(sql)
        try:
            mv = await self.catalog.find_eligible(tenant_id, sig, self.config.max_staleness_ms)
        except DatabaseException as e:
            logger.warning(f"MV lookup failed for tenant {tenant_id}: {e}")
            return self._bypass(sql, RewriteReason.LOOKUP_ERROR)

        if mv is None:
            return self._bypass(sql, RewriteReason.NO_MATCH)

        if mv.engine == EngineType.OLAP and not self.config.cross_engine_enabled:
            return self._bypass(sql, RewriteReason.CROSS_ENGINE_DISABLED, engine=EngineType.OLAP)

        if mv.engine == EngineType.OLAP and not self.olap_available:
            return self._bypass(sql, RewriteReason.OLAP_UNAVAILABLE, engine=EngineType.OLAP)

        self.observatory.record_rewrite(mv.engine, used=True)
        logger.debug(f"Rewrite using MV {mv.id} on {mv.engine.value}")
        return RewriteResult(
            used=True,
            sql=build_rewritten_sql(mv),
            engine=mv.engine,
            mv_id=mv.id,
            freshness_ms=mv.freshness_ms(),
        )
