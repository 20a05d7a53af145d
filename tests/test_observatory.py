"""
Unit Tests for the Performance Observatory
Tests per-engine counters, the slow-query log and the Prometheus mirror.
"""
import hashlib
import time
from unittest.mock import patch

from query_accelerator.engines.selector import EngineType
from query_accelerator.monitoring.metrics import PerformanceObservatory


def _ms_ago(ms: float) -> float:
    return time.time() * 1000 - ms


class TestMvCounters:
    """Refresh and rewrite counters partitioned by engine."""

    def setup_method(self):
        self.observatory = PerformanceObservatory()

    def test_snapshot_always_has_both_engines(self):
        stats = self.observatory.mv_stats()

        assert stats["suggested"] == 0
        assert set(stats["by_engine"]) == {"oltp", "olap"}
        for engine_stats in stats["by_engine"].values():
            assert engine_stats == {
                "refresh_success": 0,
                "refresh_failed": 0,
                "rewrite_used": 0,
                "rewrite_bypassed": 0,
            }
        assert stats["bypass_reasons"] == {}

    def test_engines_increment_independently(self):
        self.observatory.record_refresh(EngineType.OLTP, success=True)
        self.observatory.record_refresh(EngineType.OLTP, success=True)
        self.observatory.record_refresh(EngineType.OLAP, success=False)

        by_engine = self.observatory.mv_stats()["by_engine"]
        assert by_engine["oltp"]["refresh_success"] == 2
        assert by_engine["oltp"]["refresh_failed"] == 0
        assert by_engine["olap"]["refresh_success"] == 0
        assert by_engine["olap"]["refresh_failed"] == 1

    def test_rewrite_counters_and_reasons(self):
        self.observatory.record_rewrite(EngineType.OLTP, used=True)
        self.observatory.record_rewrite(EngineType.OLAP, used=False, reason="cross_engine_disabled")
        self.observatory.record_rewrite(EngineType.OLTP, used=False, reason="no_match")
        self.observatory.record_rewrite(EngineType.OLTP, used=False, reason="no_match")

        stats = self.observatory.mv_stats()
        assert stats["by_engine"]["oltp"]["rewrite_used"] == 1
        assert stats["by_engine"]["oltp"]["rewrite_bypassed"] == 2
        assert stats["by_engine"]["olap"]["rewrite_bypassed"] == 1
        assert stats["bypass_reasons"] == {"no_match": 2, "cross_engine_disabled": 1}

    def test_snapshot_is_a_copy(self):
        snapshot = self.observatory.snapshot()
        self.observatory.record_refresh(EngineType.OLTP, success=True)
        assert snapshot.by_engine["oltp"].refresh_success == 0

    def test_reset_clears_everything(self):
        self.observatory.record_refresh(EngineType.OLAP, success=True)
        self.observatory.record_rewrite(EngineType.OLTP, used=False, reason="disabled")
        self.observatory.record_suggested(2)
        self.observatory.record_query("select 1", 900.0)

        self.observatory.reset()

        stats = self.observatory.mv_stats()
        assert stats["suggested"] == 0
        assert stats["by_engine"]["olap"]["refresh_success"] == 0
        assert stats["bypass_reasons"] == {}
        assert self.observatory.samples_since(3_600_000) == []


class TestQuerySamples:
    """Slow-query log used by the detector and the engine split report."""

    def setup_method(self):
        self.observatory = PerformanceObservatory(slow_threshold_ms=500.0, retention_ms=60_000, max_samples=5)

    def test_sample_fields(self):
        sample = self.observatory.record_query("SELECT 1", 12.5, engine=EngineType.OLTP, tenant_id="t1")

        assert sample.sql_hash == hashlib.sha1(b"SELECT 1").hexdigest()
        assert sample.sql == "SELECT 1"
        assert sample.duration_ms == 12.5
        assert sample.engine == EngineType.OLTP
        assert sample.tenant_id == "t1"

    def test_slow_since_threshold_order_and_limit(self):
        self.observatory.record_query("a", 499.0)
        self.observatory.record_query("b", 500.0)
        self.observatory.record_query("c", 2000.0)
        self.observatory.record_query("d", 900.0)

        slow = self.observatory.slow_since(60_000)
        assert [s.sql for s in slow] == ["c", "d", "b"]
        assert [s.sql for s in self.observatory.slow_since(60_000, limit=1)] == ["c"]

    def test_slow_since_filters_tenant(self):
        self.observatory.record_query("a", 900.0, tenant_id="t1")
        self.observatory.record_query("b", 900.0, tenant_id="t2")

        assert [s.sql for s in self.observatory.slow_since(60_000, tenant_id="t2")] == ["b"]

    def test_window_and_retention(self):
        self.observatory.record_query("expired", 900.0, observed_at_ms=_ms_ago(120_000))
        self.observatory.record_query("older", 900.0, observed_at_ms=_ms_ago(30_000))
        self.observatory.record_query("recent", 900.0)

        assert [s.sql for s in self.observatory.samples_since(10_000)] == ["recent"]
        # Past the retention horizon samples are gone whatever the window
        assert [s.sql for s in self.observatory.samples_since(600_000)] == ["older", "recent"]

    def test_bounded_sample_count(self):
        for i in range(8):
            self.observatory.record_query(f"q{i}", 900.0)

        samples = self.observatory.samples_since(60_000)
        assert [s.sql for s in samples] == ["q3", "q4", "q5", "q6", "q7"]

    def test_engine_split(self):
        self.observatory.record_query("a", 1.0, engine=EngineType.OLTP)
        self.observatory.record_query("b", 1.0, engine=EngineType.OLAP)
        self.observatory.record_query("c", 1.0, engine=EngineType.OLAP)
        self.observatory.record_query("d", 1.0, engine=EngineType.OLAP)
        self.observatory.record_query("untagged", 1.0)

        split = self.observatory.engine_split_since(60_000)
        assert split == {"total": 4, "counts": {"oltp": 1, "olap": 3}, "pct_olap": 0.75}

    def test_engine_split_empty(self):
        assert self.observatory.engine_split_since(60_000) == {
            "total": 0, "counts": {"oltp": 0, "olap": 0}, "pct_olap": 0.0,
        }


class TestPrometheusMirror:

    def setup_method(self):
        self.observatory = PerformanceObservatory()

    def test_counters_mirrored(self):
        registry = self.observatory.registry
        self.observatory.record_refresh(EngineType.OLAP, success=False)
        self.observatory.record_rewrite(EngineType.OLTP, used=True)
        self.observatory.record_rewrite(EngineType.OLTP, used=False, reason="no_match")
        self.observatory.record_suggested(2)
        self.observatory.record_query("select 1", 42.0, engine=EngineType.OLTP)

        assert registry.get_sample_value("mv_refresh_total", {"engine": "olap", "status": "failed"}) == 1.0
        assert registry.get_sample_value("mv_rewrite_total", {"engine": "oltp", "outcome": "used"}) == 1.0
        assert registry.get_sample_value("mv_rewrite_total", {"engine": "oltp", "outcome": "no_match"}) == 1.0
        assert registry.get_sample_value("mv_suggested_total") == 2.0
        assert registry.get_sample_value("query_duration_ms_count", {"engine": "oltp"}) == 1.0

    def test_instances_do_not_share_registries(self):
        other = PerformanceObservatory()
        self.observatory.record_suggested(1)
        assert other.registry.get_sample_value("mv_suggested_total") == 0.0

    def test_start_metrics_server(self):
        with patch("query_accelerator.monitoring.metrics.start_http_server") as start:
            self.observatory.start_metrics_server(9108)
        start.assert_called_once_with(9108, registry=self.observatory.registry)
