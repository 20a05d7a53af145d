"""
Performance Observatory
Per-engine counters for MV refresh and rewrite outcomes plus a rolling log
of query samples used by the workload detector and the engine split report.
"""
import threading
import time
from collections import Counter as TallyCounter
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

from query_accelerator.acceleration.signature import sql_hash
from query_accelerator.core.logging import get_logger
from query_accelerator.engines.selector import EngineType

logger = get_logger(__name__)


def now_ms() -> float:
    return time.time() * 1000


@dataclass
class QuerySample:
    """Single observed query execution."""
    sql_hash: str
    sql: str
    duration_ms: float
    observed_at_ms: float
    engine: EngineType | None = None
    tenant_id: str | None = None


@dataclass
class EngineStats:
    """Monotonic MV counters for one engine."""
    refresh_success: int = 0
    refresh_failed: int = 0
    rewrite_used: int = 0
    rewrite_bypassed: int = 0


@dataclass
class ObservatorySnapshot:
    suggested: int
    by_engine: dict[str, EngineStats] = field(default_factory=dict)
    bypass_reasons: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "suggested": self.suggested,
            "by_engine": {name: asdict(stats) for name, stats in self.by_engine.items()},
            "bypass_reasons": dict(self.bypass_reasons),
        }


class PerformanceObservatory:
    """Thread-safe, process-lifetime metrics for query acceleration."""

    def __init__(
        self,
        slow_threshold_ms: float = 500.0,
        retention_ms: int = 3_600_000,
        max_samples: int = 1000,
    ):
        self.slow_threshold_ms = slow_threshold_ms
        self.retention_ms = retention_ms
        self.max_samples = max_samples
        self._lock = threading.RLock()
        self._samples: deque[QuerySample] = deque(maxlen=max_samples)
        self._engine_stats: dict[EngineType, EngineStats] = {}
        self._bypass_reasons: TallyCounter[str] = TallyCounter()
        self._suggested = 0
        self._init_counters()

        # Each observatory owns its registry so independent instances never collide
        self.registry = CollectorRegistry()
        self._refresh_total = Counter(
            "mv_refresh_total", "Materialized view refreshes by outcome",
            ["engine", "status"], registry=self.registry,
        )
        self._rewrite_total = Counter(
            "mv_rewrite_total", "Rewrite decisions by outcome",
            ["engine", "outcome"], registry=self.registry,
        )
        self._suggested_total = Counter(
            "mv_suggested_total", "MV candidates suggested by the workload detector",
            registry=self.registry,
        )
        self._query_duration = Histogram(
            "query_duration_ms", "Observed query duration in milliseconds",
            ["engine"], registry=self.registry,
            buckets=(5, 25, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
        )

    def _init_counters(self) -> None:
        self._engine_stats = {engine: EngineStats() for engine in EngineType}
        self._bypass_reasons.clear()
        self._suggested = 0

    # Query samples

    def record_query(
        self,
        sql: str,
        duration_ms: float,
        engine: EngineType | None = None,
        tenant_id: str | None = None,
        observed_at_ms: float | None = None,
    ) -> QuerySample:
        """Record an executed query."""
        sample = QuerySample(
            sql_hash=sql_hash(sql),
            sql=sql,
            duration_ms=duration_ms,
            observed_at_ms=observed_at_ms if observed_at_ms is not None else now_ms(),
            engine=engine,
            tenant_id=tenant_id,
        )
        with self._lock:
            self._samples.append(sample)
            self._evict()
        if engine is not None:
            self._query_duration.labels(engine=engine.value).observe(duration_ms)
        if duration_ms >= self.slow_threshold_ms:
            logger.debug(f"Slow query {sample.sql_hash[:12]} took {duration_ms:.1f}ms")
        return sample

    def _evict(self, current_ms: float | None = None) -> None:
        """Drop samples past the retention horizon, oldest first."""
        cutoff = (current_ms if current_ms is not None else now_ms()) - self.retention_ms
        while self._samples and self._samples[0].observed_at_ms < cutoff:
            self._samples.popleft()

    def samples_since(self, since_ms: int, tenant_id: str | None = None) -> list[QuerySample]:
        """All samples observed within the last `since_ms` milliseconds."""
        current = now_ms()
        cutoff = current - since_ms
        with self._lock:
            self._evict(current)
            return [
                s for s in self._samples
                if s.observed_at_ms >= cutoff and (tenant_id is None or s.tenant_id == tenant_id)
            ]

    def slow_since(self, since_ms: int, tenant_id: str | None = None, limit: int = 100) -> list[QuerySample]:
        """Slow samples in the window, slowest first."""
        slow = [
            s for s in self.samples_since(since_ms, tenant_id)
            if s.duration_ms >= self.slow_threshold_ms
        ]
        slow.sort(key=lambda s: s.duration_ms, reverse=True)
        return slow[:limit]

    def engine_split_since(self, since_ms: int) -> dict[str, Any]:
        """Share of recorded queries served by each engine."""
        counts = {engine.value: 0 for engine in EngineType}
        for sample in self.samples_since(since_ms):
            if sample.engine is not None:
                counts[sample.engine.value] += 1
        total = sum(counts.values())
        return {
            "total": total,
            "counts": counts,
            "pct_olap": (counts[EngineType.OLAP.value] / total) if total else 0.0,
        }

    # MV counters

    def record_refresh(self, engine: EngineType, success: bool) -> None:
        with self._lock:
            stats = self._engine_stats[engine]
            if success:
                stats.refresh_success += 1
            else:
                stats.refresh_failed += 1
        self._refresh_total.labels(engine=engine.value, status="success" if success else "failed").inc()

    def record_rewrite(self, engine: EngineType, used: bool, reason: str | None = None) -> None:
        with self._lock:
            stats = self._engine_stats[engine]
            if used:
                stats.rewrite_used += 1
            else:
                stats.rewrite_bypassed += 1
                if reason:
                    self._bypass_reasons[reason] += 1
        self._rewrite_total.labels(engine=engine.value, outcome="used" if used else (reason or "bypassed")).inc()

    def record_suggested(self, n: int = 1) -> None:
        with self._lock:
            self._suggested += n
        self._suggested_total.inc(n)

    def snapshot(self) -> ObservatorySnapshot:
        with self._lock:
            return ObservatorySnapshot(
                suggested=self._suggested,
                by_engine={
                    engine.value: EngineStats(**asdict(stats))
                    for engine, stats in self._engine_stats.items()
                },
                bypass_reasons=dict(self._bypass_reasons),
            )

    def mv_stats(self) -> dict[str, Any]:
        """Snapshot of `{suggested, by_engine: {oltp: {...}, olap: {...}}, bypass_reasons}`."""
        return self.snapshot().to_dict()

    def reset(self) -> None:
        """Clear samples and in-memory counters. Prometheus counters stay monotonic."""
        with self._lock:
            self._samples.clear()
            self._init_counters()

    def start_metrics_server(self, port: int) -> None:
        """Expose the Prometheus registry over HTTP."""
        start_http_server(port, registry=self.registry)
        logger.info(f"Prometheus metrics server started on port {port}")
