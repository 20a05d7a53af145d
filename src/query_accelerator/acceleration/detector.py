"""
Workload Detector
Turns recurring slow analytical queries into MV proposals.

The detector only identifies candidates; storing them as proposed MVs is
left to the caller (see MaterializedViewCatalog.propose).
"""

import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from query_accelerator.core.config import AccelerationConfig
from query_accelerator.core.logging import get_logger
from query_accelerator.engines.selector import EngineType, choose_engine
from query_accelerator.monitoring.metrics import PerformanceObservatory, QuerySample

from .signature import normalize_sql, signature

logger = get_logger(__name__)

DEFAULT_WINDOW_MS = 600_000
MAX_CANDIDATES = 10
# Assumed fraction of a query's runtime an MV saves
SAVINGS_FACTOR = 0.8

_AGGREGATE_CALL = re.compile(r"\b(count|sum|avg|min|max)\(")
_DISTINCT = re.compile(r"\bdistinct\b")


class ViewType(str, Enum):
    """Shape of the query an MV would precompute."""
    AGGREGATE = "aggregate"
    JOIN = "join"
    FILTERED = "filtered"
    REPORTING = "reporting"


@dataclass
class MaterializedViewCandidate:
    name: str
    definition_sql: str
    signature: str
    occurrences: int
    avg_duration_ms: float
    total_duration_ms: float
    suggested_engine: EngineType
    view_type: ViewType
    estimated_savings_ms: float
    target_database: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["suggested_engine"] = self.suggested_engine.value
        data["view_type"] = self.view_type.value
        return data


def is_structurally_analytical(sql: str) -> bool:
    """Engine selector says olap, or the statement aggregates or deduplicates."""
    if choose_engine(sql) == EngineType.OLAP:
        return True
    normalized = normalize_sql(sql)
    return bool(_AGGREGATE_CALL.search(normalized) or _DISTINCT.search(normalized))


def suggest_view_type(sql: str) -> ViewType:
    normalized = normalize_sql(sql)
    if "group by" in normalized or _AGGREGATE_CALL.search(normalized):
        return ViewType.AGGREGATE
    if " join " in normalized:
        return ViewType.JOIN
    if " where " in normalized:
        return ViewType.FILTERED
    return ViewType.REPORTING


class WorkloadDetector:
    """Scans the observatory's slow-query log for MV candidates."""

    def __init__(
        self,
        observatory: PerformanceObservatory,
        config: AccelerationConfig,
        target_database: str | None = None,
    ):
        self.observatory = observatory
        self.config = config
        self.target_database = target_database

    def suggest_from_recent_workload(
        self,
        tenant_id: str,
        since_ms: int = DEFAULT_WINDOW_MS,
    ) -> list[MaterializedViewCandidate]:
        """Candidates from the tenant's slow queries in the last `since_ms`, best savings first."""
        if not self.config.auto_detect_enabled:
            return []

        groups: dict[str, list[QuerySample]] = {}
        for sample in self.observatory.slow_since(since_ms, tenant_id=tenant_id, limit=self.observatory.max_samples):
            if sample.tenant_id != tenant_id:
                continue
            groups.setdefault(signature(sample.sql), []).append(sample)

        candidates = []
        for sig, samples in groups.items():
            if len(samples) < self.config.detect_min_occurrences:
                continue
            latest = max(samples, key=lambda s: s.observed_at_ms)
            if not is_structurally_analytical(latest.sql):
                continue

            total = sum(s.duration_ms for s in samples)
            avg = total / len(samples)
            # Analytical placement needs a database to land in
            engine = EngineType.OLTP
            if self.target_database and choose_engine(latest.sql) == EngineType.OLAP:
                engine = EngineType.OLAP
            candidates.append(MaterializedViewCandidate(
                name=f"auto_mv_{sig[:12]}",
                definition_sql=latest.sql,
                signature=sig,
                occurrences=len(samples),
                avg_duration_ms=avg,
                total_duration_ms=total,
                suggested_engine=engine,
                view_type=suggest_view_type(latest.sql),
                estimated_savings_ms=avg * len(samples) * SAVINGS_FACTOR,
                target_database=self.target_database,
            ))

        candidates.sort(key=lambda c: c.estimated_savings_ms, reverse=True)
        if candidates:
            logger.info(f"Detector found {len(candidates)} MV candidates for tenant {tenant_id}")
        return candidates[:MAX_CANDIDATES]

    def record_suggested(self, n: int = 1) -> None:
        self.observatory.record_suggested(n)
