"""
Pytest Configuration and Fixtures
Provides shared fixtures and configuration for all tests.
"""
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from query_accelerator.acceleration.catalog import MaterializedViewCatalog
from query_accelerator.core.config import AccelerationConfig
from query_accelerator.data_access.db import create_catalog_engine, create_session_factory, init_catalog_schema
from query_accelerator.engines.backends import AnalyticalBackend, TransactionalBackend
from query_accelerator.engines.selector import EngineType
from query_accelerator.monitoring.metrics import PerformanceObservatory


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as touching a real catalog database"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )


@pytest.fixture
def catalog_url(tmp_path: Path) -> str:
    """Temp-file SQLite database; in-memory databases are per-connection."""
    return f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}"


@pytest_asyncio.fixture
async def catalog_engine(catalog_url: str) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_catalog_engine(catalog_url)
    await init_catalog_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def catalog(catalog_engine: AsyncEngine) -> MaterializedViewCatalog:
    return MaterializedViewCatalog(create_session_factory(catalog_engine))


@pytest.fixture
def observatory() -> PerformanceObservatory:
    return PerformanceObservatory(slow_threshold_ms=500.0)


@pytest.fixture
def make_config() -> Callable[..., AccelerationConfig]:
    """Factory for configs with acceleration switched on; override per test."""
    def _make(**overrides) -> AccelerationConfig:
        values = {
            "mv_enabled": True,
            "rewrite_enabled": True,
            "cross_engine_enabled": False,
            "auto_refresh_enabled": False,
            "auto_detect_enabled": False,
        }
        values.update(overrides)
        return AccelerationConfig(**values)
    return _make


@pytest.fixture
def oltp_backend() -> AsyncMock:
    backend = AsyncMock(spec=TransactionalBackend)
    backend.engine_type = EngineType.OLTP
    backend.refresh.return_value = True
    backend.execute.return_value = []
    return backend


@pytest.fixture
def olap_backend() -> AsyncMock:
    backend = AsyncMock(spec=AnalyticalBackend)
    backend.engine_type = EngineType.OLAP
    backend.refresh_materialized_view.return_value = True
    backend.execute.return_value = []
    return backend


@pytest.fixture
def sales_sql() -> str:
    return "SELECT region, SUM(amount) AS total FROM sales GROUP BY region"
