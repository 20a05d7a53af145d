"""
Catalog database helpers.
Async engine and session management for the materialized view catalog.
"""
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from query_accelerator.core.config import Settings


def create_catalog_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine backing the MV catalog."""
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database and parsed.database != ":memory:":
        # Ensure directory exists for sqlite file paths
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    return create_async_engine(url, echo=echo, future=True)


def engine_from_settings(settings: Settings) -> AsyncEngine:
    return create_catalog_engine(settings.get_database_url(async_mode=True))


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_catalog_schema(engine: AsyncEngine) -> None:
    """Create all SQLModel tables in the configured database."""
    from query_accelerator.data_access.models import MaterializedViewRecord  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def session_scope(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Provide a transactional scope around a series of operations."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
