"""
Tenant-scoped repository: the only way handlers reach tenant-owned rows.

Built from a GuardedContext issued by the authorization gateway. Every query is
filtered by the guarded tenant and every new row is stamped with it, so a
handler cannot read or write another tenant's data by forgetting a filter.
"""

from typing import List, Optional, Type
from sqlmodel.ext.asyncio.session import AsyncSession
from framework.exceptions.handler import Forbidden, Unauthenticated
from framework.security import GuardedContext
from .base import BaseRepository, T


class TenantScopedRepository(BaseRepository[T]):
    """Model must have a `tenant_id` column."""

    def __init__(self, session: AsyncSession, model: Type[T], guarded: GuardedContext):
        if not isinstance(guarded, GuardedContext) or not guarded.context.trusted:
            raise Unauthenticated("storage access without a gateway context")
        super().__init__(session, model)
        self.guarded = guarded

    @property
    def tenant_id(self) -> Optional[int]:
        return self.guarded.tenant_id

    def _scope(self, filters: dict) -> dict:
        if self.tenant_id is not None:
            filters["tenant_id"] = self.tenant_id
        return filters

    def _ensure_writable(self, entity: T) -> None:
        if self.guarded.ownership_pending:
            raise Forbidden("Ownership has not been verified for this operation")
        if self.tenant_id is None:
            # Super Admin without a target tenant may read across tenants, never write
            raise Forbidden("A target tenant is required for write operations")
        if entity.tenant_id != self.tenant_id:
            raise Forbidden("Cross-tenant write rejected")

    async def get_by_id(self, id: int) -> Optional[T]:
        return await self.find_one(id=id)

    async def get_all(self, limit: int = 100, offset: int = 0) -> List[T]:
        return await self.find_all(limit=limit, offset=offset)

    async def find_one(self, **filters) -> Optional[T]:
        return await super().find_one(**self._scope(filters))

    async def find_all(self, limit: Optional[int] = None, offset: int = 0, **filters) -> List[T]:
        return await super().find_all(limit=limit, offset=offset, **self._scope(filters))

    async def count(self, **filters) -> int:
        return await super().count(**self._scope(filters))

    async def create(self, entity: T) -> T:
        # tenant_id always comes from the guarded context, never from the payload
        entity.tenant_id = self.tenant_id
        self._ensure_writable(entity)
        return await super().create(entity)

    async def update(self, entity: T) -> T:
        self._ensure_writable(entity)
        return await super().update(entity)

    async def delete(self, id: int) -> bool:
        entity = await self.get_by_id(id)
        if entity is None:
            return False
        self._ensure_writable(entity)
        await self.session.delete(entity)
        return True
