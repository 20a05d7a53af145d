"""
Engine Backends
Execution and refresh primitives for the transactional and analytical engines.

- TransactionalBackend: any SQLAlchemy async engine. PostgreSQL refreshes
  native materialized views, rebuilding them when the definition changed;
  other dialects recompute into a staging table and swap it in within one
  transaction.
- AnalyticalBackend: ClickHouse through clickhouse-driver, run in a worker
  thread since the driver is blocking.
"""

import asyncio
import math
import threading
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import Any, TypeVar

from clickhouse_driver import Client
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from query_accelerator.core.exceptions import BackendException, BackendTimeoutException
from query_accelerator.core.logging import get_logger
from query_accelerator.data_access.models import MaterializedViewRecord

from .selector import EngineType

logger = get_logger(__name__)

R = TypeVar("R")


async def run_with_timeout(awaitable: Awaitable[R], timeout_ms: int | None, engine: EngineType) -> R:
    """Await a backend call, converting expiry into BackendTimeoutException."""
    if timeout_ms is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError as e:
        raise BackendTimeoutException(
            f"{engine.value} call exceeded {timeout_ms}ms",
            timeout_ms=timeout_ms,
            engine=engine.value,
        ) from e


class EngineBackend(ABC):
    """Abstract interface for engine execution and MV refresh."""

    engine_type: EngineType

    @abstractmethod
    async def execute(self, sql: str, params: dict[str, Any] | None = None,
                      timeout_ms: int | None = None) -> list[dict[str, Any]]:
        """Run a statement and return its rows as dictionaries."""
        pass

    @abstractmethod
    async def refresh(self, view: MaterializedViewRecord, timeout_ms: int | None = None) -> bool:
        """Bring the view's stored result up to date."""
        pass

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None


class TransactionalBackend(EngineBackend):
    """OLTP engine over a SQLAlchemy AsyncEngine."""

    engine_type = EngineType.OLTP

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    @property
    def supports_native_mv(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    async def execute(self, sql: str, params: dict[str, Any] | None = None,
                      timeout_ms: int | None = None) -> list[dict[str, Any]]:
        return await run_with_timeout(self._execute(sql, params), timeout_ms, self.engine_type)

    async def _execute(self, sql: str, params: dict[str, Any] | None) -> list[dict[str, Any]]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(text(sql), params or {})
                if not result.returns_rows:
                    await conn.commit()
                    return []
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise BackendException(f"OLTP execution failed: {e}", engine=self.engine_type.value) from e

    async def refresh(self, view: MaterializedViewRecord, timeout_ms: int | None = None) -> bool:
        return await run_with_timeout(self._refresh(view), timeout_ms, self.engine_type)

    async def _refresh(self, view: MaterializedViewRecord) -> bool:
        try:
            async with self.engine.connect() as conn:
                if self.supports_native_mv:
                    await self._refresh_native(conn, view)
                else:
                    await self._refresh_swap(conn, view)
                await conn.commit()
        except SQLAlchemyError as e:
            raise BackendException(f"OLTP refresh of {view.target_table} failed: {e}",
                                   engine=self.engine_type.value) from e
        logger.debug(f"Refreshed OLTP view {view.target_table}")
        return True

    async def _refresh_native(self, conn: AsyncConnection, view: MaterializedViewRecord) -> None:
        """
        PostgreSQL materialized view, tagged with the signature it was built from.

        A view built from another definition is dropped and recreated, since
        REFRESH only ever re-runs the stored query.
        """
        state = await conn.execute(
            text(
                "SELECT to_regclass(:name) IS NOT NULL AS present, "
                "obj_description(to_regclass(:name), 'pg_class') AS built_from"
            ),
            {"name": view.target_table},
        )
        present, built_from = state.one()
        if present and built_from == view.normalized_signature:
            await conn.execute(text(f"REFRESH MATERIALIZED VIEW {view.target_table}"))
            return

        if present:
            logger.info(f"Definition of {view.target_table} changed; rebuilding materialized view")
            await conn.execute(text(f"DROP MATERIALIZED VIEW {view.target_table}"))
        await conn.execute(text(f"CREATE MATERIALIZED VIEW {view.target_table} AS {view.definition_sql}"))
        await conn.execute(text(
            f"COMMENT ON MATERIALIZED VIEW {view.target_table} IS '{view.normalized_signature}'"
        ))

    async def _refresh_swap(self, conn: AsyncConnection, view: MaterializedViewRecord) -> None:
        """Recompute into a staging table and swap it in; readers keep the old result until commit."""
        if self.engine.dialect.name == "sqlite":
            # The sqlite3 driver runs DDL outside any transaction unless one is opened explicitly
            await conn.exec_driver_sql("BEGIN")
        staging = f"{view.target_table}__staging"
        await conn.execute(text(f"DROP TABLE IF EXISTS {staging}"))
        await conn.execute(text(f"CREATE TABLE {staging} AS {view.definition_sql}"))
        await conn.execute(text(f"DROP TABLE IF EXISTS {view.target_table}"))
        await conn.execute(text(f"ALTER TABLE {staging} RENAME TO {view.target_table}"))

    async def close(self) -> None:
        await self.engine.dispose()


class AnalyticalBackend(EngineBackend):
    """OLAP engine over ClickHouse."""

    engine_type = EngineType.OLAP

    def __init__(self, client: Client):
        self.client = client
        # clickhouse-driver clients are not safe for concurrent use
        self._client_lock = threading.Lock()

    @classmethod
    def from_config(cls, host: str, port: int, user: str, password: str, database: str) -> "AnalyticalBackend":
        return cls(Client(host=host, port=port, user=user, password=password, database=database))

    def _run(self, sql: str, params: dict[str, Any] | None, timeout_ms: int | None) -> list[dict[str, Any]]:
        settings = {}
        if timeout_ms is not None:
            settings["max_execution_time"] = max(1, math.ceil(timeout_ms / 1000))
        with self._client_lock:
            rows, columns = self.client.execute(sql, params, with_column_types=True, settings=settings)
        names = [name for name, _ in columns]
        return [dict(zip(names, row)) for row in rows]

    async def _call(self, sql: str, params: dict[str, Any] | None, timeout_ms: int | None) -> list[dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._run, sql, params, timeout_ms)
        except Exception as e:
            raise BackendException(f"OLAP execution failed: {e}", engine=self.engine_type.value) from e

    async def execute(self, sql: str, params: dict[str, Any] | None = None,
                      timeout_ms: int | None = None) -> list[dict[str, Any]]:
        return await run_with_timeout(self._call(sql, params, timeout_ms), timeout_ms, self.engine_type)

    async def refresh_materialized_view(self, target_database: str, view: MaterializedViewRecord,
                                        timeout_ms: int | None = None) -> bool:
        """Trigger ClickHouse's refresh of a refreshable materialized view."""
        sql = f"SYSTEM REFRESH VIEW {target_database}.{view.target_table}"
        await self.execute(sql, timeout_ms=timeout_ms)
        logger.debug(f"Refreshed OLAP view {target_database}.{view.target_table}")
        return True

    async def refresh(self, view: MaterializedViewRecord, timeout_ms: int | None = None) -> bool:
        if not view.target_database:
            raise BackendException(f"OLAP view {view.id} has no target database", engine=self.engine_type.value)
        return await self.refresh_materialized_view(view.target_database, view, timeout_ms)

    async def close(self) -> None:
        await asyncio.to_thread(self.client.disconnect)
