"""
Integration Tests for the QueryAccelerator facade
End-to-end query path over a SQLite catalog and transactional engine.
"""
from unittest.mock import MagicMock

import pytest

from query_accelerator import QueryResult, create_query_accelerator
from query_accelerator.acceleration.rewrite import RewriteReason
from query_accelerator.core.config import Settings
from query_accelerator.core.exceptions import BackendException, NotFoundException
from query_accelerator.data_access.models import RefreshStatus
from query_accelerator.engines.selector import EngineType

pytestmark = pytest.mark.integration

TENANT = "tenant-a"


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        values = {
            "database_url": f"sqlite:///{tmp_path / 'accelerator.db'}",
            "mv_enable": True,
            "mv_rewrite_enable": True,
            "clickhouse_enable": False,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _make


async def _load_sales(acc):
    await acc.oltp_backend.execute("CREATE TABLE sales (region TEXT, amount INTEGER)")
    await acc.oltp_backend.execute("INSERT INTO sales VALUES ('eu', 10), ('eu', 5), ('us', 7)")


@pytest.fixture
async def accelerator(make_settings):
    acc = await create_query_accelerator(make_settings())
    await _load_sales(acc)
    yield acc
    await acc.close()


class TestQueryPath:

    @pytest.mark.asyncio
    async def test_plain_query_runs_on_oltp(self, accelerator):
        result = await accelerator.execute(TENANT, "SELECT amount FROM sales WHERE region = :r", {"r": "us"})

        assert isinstance(result, QueryResult)
        assert result.rows == [{"amount": 7}]
        assert result.engine == EngineType.OLTP
        assert result.rewrite.used is False
        assert result.rewrite.reason == RewriteReason.NO_MATCH
        assert result.duration_ms >= 0
        assert accelerator.observatory.engine_split_since(60_000)["counts"]["oltp"] == 1

    @pytest.mark.asyncio
    async def test_refreshed_mv_serves_query(self, accelerator, sales_sql):
        mv = await accelerator.create_mv(TENANT, {"name": "by region", "definition_sql": sales_sql, "enabled": True})
        assert await accelerator.refresh_once(TENANT, mv.id) == RefreshStatus.SUCCESS

        result = await accelerator.execute(TENANT, sales_sql)

        assert result.rewrite.used is True
        assert result.rewrite.mv_id == mv.id
        assert result.engine == EngineType.OLTP
        assert sorted(result.rows, key=lambda r: r["region"]) == [
            {"region": "eu", "total": 15},
            {"region": "us", "total": 7},
        ]
        assert accelerator.mv_stats()["by_engine"]["oltp"]["rewrite_used"] == 1

    @pytest.mark.asyncio
    async def test_analytical_query_falls_back_without_olap_backend(self, accelerator, sales_sql):
        assert accelerator.choose_engine(sales_sql) == EngineType.OLAP

        result = await accelerator.execute(TENANT, sales_sql)

        assert result.engine == EngineType.OLTP
        assert len(result.rows) == 2

    @pytest.mark.asyncio
    async def test_backend_errors_propagate(self, accelerator):
        with pytest.raises(BackendException):
            await accelerator.execute(TENANT, "SELECT * FROM missing_table")

    @pytest.mark.asyncio
    async def test_unknown_mv_is_not_found(self, accelerator):
        with pytest.raises(NotFoundException):
            await accelerator.get_mv(TENANT, "missing")
        with pytest.raises(NotFoundException):
            await accelerator.update_mv(TENANT, "missing", {"enabled": True})
        with pytest.raises(NotFoundException):
            await accelerator.refresh_once(TENANT, "missing")


class TestAnalyticalRouting:

    @pytest.mark.asyncio
    async def test_olap_queries_go_to_clickhouse(self, make_settings):
        client = MagicMock()
        client.execute.return_value = ([("eu", 15)], [("region", "String"), ("total", "UInt64")])
        acc = await create_query_accelerator(make_settings(), olap_client=client)
        try:
            result = await acc.execute(TENANT, "select region, sum(amount) as total from sales group by region")

            assert result.engine == EngineType.OLAP
            assert result.rows == [{"region": "eu", "total": 15}]
            assert client.execute.called

            point = await acc.execute(TENANT, "select 1 as one")
            assert point.engine == EngineType.OLTP
        finally:
            await acc.close()
        client.disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_olap_mv_rewrite_and_refresh(self, make_settings, sales_sql):
        client = MagicMock()
        client.execute.return_value = ([], [])
        acc = await create_query_accelerator(make_settings(mv_cross_engine_enable=True), olap_client=client)
        try:
            mv = await acc.create_mv(TENANT, {
                "name": "olap rollup", "definition_sql": sales_sql, "engine": "olap",
                "target_database": "analytics", "enabled": True,
            })
            assert await acc.refresh_once(TENANT, mv.id) == RefreshStatus.SUCCESS
            assert client.execute.call_args.args[0] == f"SYSTEM REFRESH VIEW analytics.{mv.target_table}"

            result = await acc.execute(TENANT, sales_sql)
            assert result.rewrite.used is True
            assert result.engine == EngineType.OLAP
            assert client.execute.call_args.args[0].endswith(f"SELECT * FROM analytics.{mv.target_table}")
        finally:
            await acc.close()

    @pytest.mark.asyncio
    async def test_oltp_mv_stays_on_oltp_when_olap_preferred(self, make_settings, sales_sql):
        client = MagicMock()
        client.execute.return_value = ([], [])
        acc = await create_query_accelerator(make_settings(), olap_client=client)
        try:
            await _load_sales(acc)
            mv = await acc.create_mv(TENANT, {"name": "by region", "definition_sql": sales_sql, "enabled": True})
            assert await acc.refresh_once(TENANT, mv.id) == RefreshStatus.SUCCESS

            result = await acc.execute(TENANT, sales_sql, prefer_olap=True)

            assert result.rewrite.used is True
            assert result.rewrite.engine == EngineType.OLTP
            assert result.engine == EngineType.OLTP
            assert len(result.rows) == 2
            client.execute.assert_not_called()

            # Unrewritten statements still honor the preference
            plain = await acc.execute(TENANT, "select 1 as one", prefer_olap=True)
            assert plain.engine == EngineType.OLAP
        finally:
            await acc.close()

    @pytest.mark.asyncio
    async def test_olap_mv_without_backend_is_a_counted_bypass(self, make_settings, sales_sql):
        acc = await create_query_accelerator(make_settings(mv_cross_engine_enable=True))
        try:
            await _load_sales(acc)
            mv = await acc.create_mv(TENANT, {
                "name": "olap rollup", "definition_sql": sales_sql, "engine": "olap",
                "target_database": "analytics", "enabled": True,
            })
            await acc.catalog.mark_refreshed(TENANT, mv.id, RefreshStatus.SUCCESS)

            result = await acc.execute(TENANT, sales_sql)

            assert result.rewrite.used is False
            assert result.rewrite.reason == RewriteReason.OLAP_UNAVAILABLE
            assert result.engine == EngineType.OLTP
            assert len(result.rows) == 2
            olap = acc.mv_stats()["by_engine"]["olap"]
            assert olap["rewrite_used"] == 0
            assert olap["rewrite_bypassed"] == 1
        finally:
            await acc.close()


class TestDetectionFlow:

    @pytest.mark.asyncio
    async def test_propose_from_recent_workload(self, make_settings, sales_sql):
        acc = await create_query_accelerator(make_settings(mv_auto_detect_enable=True))
        try:
            for _ in range(3):
                acc.observatory.record_query(sales_sql, 1200.0, engine=EngineType.OLTP, tenant_id=TENANT)

            assert len(acc.suggest_from_recent_workload(TENANT)) == 1

            [proposed] = await acc.propose_from_recent_workload(TENANT)
            assert proposed.proposed is True
            assert proposed.enabled is False
            assert acc.mv_stats()["suggested"] == 1

            assert await acc.propose_from_recent_workload(TENANT) == []

            approved = await acc.approve_mv(TENANT, proposed.id)
            assert approved.enabled is True
        finally:
            await acc.close()

    @pytest.mark.asyncio
    async def test_detection_disabled(self, make_settings, sales_sql):
        acc = await create_query_accelerator(make_settings(mv_auto_detect_enable=False))
        try:
            for _ in range(3):
                acc.observatory.record_query(sales_sql, 1200.0, tenant_id=TENANT)
            assert acc.suggest_from_recent_workload(TENANT) == []
        finally:
            await acc.close()


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_scheduler_toggle(self, make_settings):
        acc = await create_query_accelerator(make_settings(mv_auto_refresh_enable=False))
        try:
            assert acc.start_mv_scheduler() is False
        finally:
            await acc.close()

        acc = await create_query_accelerator(make_settings(mv_auto_refresh_enable=True))
        try:
            assert acc.start_mv_scheduler() is True
            await acc.stop_mv_scheduler()
            assert acc.scheduler.running is False
        finally:
            await acc.close()

    @pytest.mark.asyncio
    async def test_crud_round_trip(self, accelerator):
        mv = await accelerator.create_mv(TENANT, {"name": "m", "definition_sql": "select 1"})
        assert accelerator.signature("SELECT 1") == mv.normalized_signature

        await accelerator.update_mv(TENANT, mv.id, {"enabled": True})
        assert [m.id for m in await accelerator.list_mvs(TENANT, enabled=True)] == [mv.id]

        await accelerator.delete_mv(TENANT, mv.id)
        assert await accelerator.list_mvs(TENANT) == []

    @pytest.mark.asyncio
    async def test_delete_forgets_refresh_lock(self, accelerator):
        mv = await accelerator.create_mv(TENANT, {"name": "m", "definition_sql": "select 1 as one", "enabled": True})
        assert await accelerator.refresh_once(TENANT, mv.id) == RefreshStatus.SUCCESS
        assert mv.id in accelerator.scheduler.refresh_locks

        await accelerator.delete_mv(TENANT, mv.id)

        assert mv.id not in accelerator.scheduler.refresh_locks
        assert mv.id not in accelerator.catalog._record_locks
