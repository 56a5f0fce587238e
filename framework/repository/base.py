"""
Repository abstract base class and generic implementation.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar, Optional, List, Type
from sqlmodel import SQLModel, select, func
from sqlmodel.ext.asyncio.session import AsyncSession

T = TypeVar("T", bound=SQLModel)


class IRepository(ABC, Generic[T]):
    """Repository interface; defines standard data access API."""

    @abstractmethod
    async def get_by_id(self, id: int) -> Optional[T]:
        pass

    @abstractmethod
    async def get_all(self, limit: int = 100, offset: int = 0) -> List[T]:
        pass

    @abstractmethod
    async def create(self, entity: T) -> T:
        pass

    @abstractmethod
    async def update(self, entity: T) -> T:
        pass

    @abstractmethod
    async def delete(self, id: int) -> bool:
        pass


class BaseRepository(IRepository[T]):
    """Generic SQLModel CRUD; subclasses add custom queries."""

    def __init__(self, session: AsyncSession, model: Type[T]):
        self.session = session
        self.model = model

    def _filtered(self, statement, **filters):
        for key, value in filters.items():
            if hasattr(self.model, key):
                statement = statement.where(getattr(self.model, key) == value)
        return statement

    async def get_by_id(self, id: int) -> Optional[T]:
        return await self.find_one(id=id)

    async def get_all(self, limit: int = 100, offset: int = 0) -> List[T]:
        """Get all entities (paginated)."""
        statement = select(self.model).order_by(self.model.id).limit(limit).offset(offset)
        result = await self.session.exec(statement)
        return list(result.all())

    async def create(self, entity: T) -> T:
        self.session.add(entity)
        return entity

    async def update(self, entity: T) -> T:
        """Update entity (SQLModel tracks changes)."""
        self.session.add(entity)
        return entity

    async def delete(self, id: int) -> bool:
        entity = await self.get_by_id(id)
        if entity:
            await self.session.delete(entity)
            return True
        return False

    async def find_one(self, **filters) -> Optional[T]:
        """Find one entity by filters (e.g. email='admin@demo.io')."""
        result = await self.session.exec(self._filtered(select(self.model), **filters))
        return result.first()

    async def find_all(self, limit: Optional[int] = None, offset: int = 0, **filters) -> List[T]:
        statement = self._filtered(select(self.model), **filters).order_by(self.model.id)
        if limit is not None:
            statement = statement.limit(limit).offset(offset)
        result = await self.session.exec(statement)
        return list(result.all())

    async def count(self, **filters) -> int:
        statement = self._filtered(select(func.count(self.model.id)), **filters)
        result = await self.session.exec(statement)
        return result.one()
