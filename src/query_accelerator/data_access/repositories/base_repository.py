"""
Repository Pattern Implementation
Generic async repository plus composable query specifications.
"""
from __future__ import annotations

import builtins
from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from sqlalchemy import and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel, select

T = TypeVar('T', bound=SQLModel)


class ISpecification(ABC):
    """Interface for query specifications (Specification pattern)."""

    @abstractmethod
    def to_sql_condition(self) -> Any:
        """Convert specification to SQL condition."""


class BaseSpecification(ISpecification):
    """Conjunction of SQLAlchemy column conditions."""

    def __init__(self, conditions: list[Any] | None = None):
        self.conditions = conditions or []

    def to_sql_condition(self) -> Any:
        if not self.conditions:
            return True
        if len(self.conditions) == 1:
            return self.conditions[0]
        return and_(*self.conditions)

    def and_(self, other: BaseSpecification) -> BaseSpecification:
        """Combine specifications with AND."""
        return BaseSpecification(self.conditions + other.conditions)


class IRepository(Generic[T], ABC):
    """Generic repository interface."""

    @abstractmethod
    async def add(self, entity: T) -> T:
        """Add a new entity."""

    @abstractmethod
    async def update(self, entity: T) -> T:
        """Persist changes made to an entity."""

    @abstractmethod
    async def list(self, specification: ISpecification | None = None) -> builtins.list[T]:
        """List entities with optional filtering."""


class AsyncSQLModelRepository(IRepository[T]):
    """Async SQLModel repository bound to one session."""

    def __init__(self, session: AsyncSession, model_class: type[T]):
        self.session = session
        self.model_class = model_class

    async def add(self, entity: T) -> T:
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def update(self, entity: T) -> T:
        """Flush changes on an attached entity."""
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def list(self, specification: ISpecification | None = None) -> builtins.list[T]:
        stmt = select(self.model_class)
        if specification:
            stmt = stmt.where(specification.to_sql_condition())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
