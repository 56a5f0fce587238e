"""Identity module repository implementations."""

from typing import Dict, Optional
from sqlalchemy import update
from sqlmodel import select, func
from framework.repository.base import BaseRepository
from framework.repository.scoped import TenantScopedRepository
from .models import ResourceKind, Tenant, TenantUsage, User


class TenantRepository(BaseRepository[Tenant]):
    """Tenant repository."""

    def __init__(self, session):
        super().__init__(session, Tenant)

    async def get_by_name(self, name: str) -> Optional[Tenant]:
        return await self.find_one(name=name)


class UserRepository(BaseRepository[User]):
    """Unscoped user lookups for authentication and context resolution only.

    Handlers use TenantUserRepository.
    """

    def __init__(self, session):
        super().__init__(session, User)

    async def get_by_email(self, email: str) -> Optional[User]:
        return await self.find_one(email=email.strip().lower())


class TenantUserRepository(TenantScopedRepository[User]):
    """Users of the guarded tenant."""

    def __init__(self, session, guarded):
        super().__init__(session, User, guarded)


def _resource_model(kind: ResourceKind):
    if kind == ResourceKind.USER:
        return User
    from apps.projects.models import Project
    return Project


class TenantUsageRepository(BaseRepository[TenantUsage]):
    """Quota counters. Increments are conditional single statements."""

    def __init__(self, session):
        super().__init__(session, TenantUsage)

    async def get_counter(self, tenant_id: int, kind: ResourceKind) -> Optional[TenantUsage]:
        return await self.find_one(tenant_id=tenant_id, kind=kind)

    async def count_resources(self, tenant_id: int, kind: ResourceKind) -> int:
        """Count rows of this kind that actually exist for the tenant."""
        model = _resource_model(kind)
        statement = select(func.count(model.id)).where(model.tenant_id == tenant_id)
        result = await self.session.exec(statement)
        return result.one()

    async def increment_if_below_limit(self, tenant_id: int, kind: ResourceKind) -> bool:
        """
        Compare-and-increment: used += 1 only while used < the tenant's current limit.

        The limit is read inside the same statement, so the comparison and the
        increment are one atomic step under the counter row's write lock.
        Returns False when the limit is reached or the counter row is missing.
        """
        limit_column = Tenant.max_users if kind == ResourceKind.USER else Tenant.max_projects
        limit = select(limit_column).where(Tenant.id == tenant_id).scalar_subquery()
        statement = (
            update(TenantUsage)
            .where(
                TenantUsage.tenant_id == tenant_id,
                TenantUsage.kind == kind,
                TenantUsage.used < limit,
            )
            .values(used=TenantUsage.used + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        return result.rowcount == 1

    async def decrement(self, tenant_id: int, kind: ResourceKind) -> bool:
        statement = (
            update(TenantUsage)
            .where(
                TenantUsage.tenant_id == tenant_id,
                TenantUsage.kind == kind,
                TenantUsage.used > 0,
            )
            .values(used=TenantUsage.used - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        return result.rowcount == 1

    async def set_used(self, tenant_id: int, kind: ResourceKind, used: int) -> TenantUsage:
        """Create or overwrite a counter (tenant creation, reconciliation)."""
        counter = await self.get_counter(tenant_id, kind)
        if counter is None:
            counter = TenantUsage(tenant_id=tenant_id, kind=kind, used=used)
        else:
            counter.used = used
        self.session.add(counter)
        return counter

    async def raise_to_actual(self, tenant_id: int, kind: ResourceKind) -> bool:
        """used = actual row count, only where used is below it. Never lowers a counter."""
        model = _resource_model(kind)
        actual = select(func.count(model.id)).where(model.tenant_id == tenant_id).scalar_subquery()
        statement = (
            update(TenantUsage)
            .where(
                TenantUsage.tenant_id == tenant_id,
                TenantUsage.kind == kind,
                TenantUsage.used < actual,
            )
            .values(used=actual)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        return result.rowcount == 1

    @staticmethod
    def locked_counters_statement(tenant_id: int):
        # Counter rows before the tenant row, the same order a reservation locks them in
        return (
            select(TenantUsage)
            .where(TenantUsage.tenant_id == tenant_id)
            .order_by(TenantUsage.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    async def lock_counters(self, tenant_id: int) -> Dict[ResourceKind, TenantUsage]:
        """Fresh counters under a write lock held until the transaction ends."""
        result = await self.session.exec(self.locked_counters_statement(tenant_id))
        return {counter.kind: counter for counter in result.all()}
