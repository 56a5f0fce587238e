"""
Quota enforcement.

reserve() claims one unit of a tenant's capacity before the resource is created,
in its own short transaction so concurrent requests see it immediately. The
claim is then either committed (resource created) or released (creation failed,
request cancelled). Concurrent reservations for the same (tenant, kind) are
linearized by the database row lock of that counter; different tenants and
kinds never contend.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict
from sqlalchemy.exc import IntegrityError
from framework.exceptions.handler import BusinessException, QuotaExceeded
from framework.logging.audit import AuditTrail
from framework.logging.logger import get_logger
from framework.repository.unit_of_work import UnitOfWork
from .models import ResourceKind
from .repository import TenantRepository, TenantUsageRepository

logger = get_logger("quota")

PENDING = "pending"
RELEASING = "releasing"
COMMITTED = "committed"
RELEASED = "released"


@dataclass
class Reservation:
    tenant_id: int
    kind: ResourceKind
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: str = PENDING

    @property
    def pending(self) -> bool:
        return self.state == PENDING


class QuotaEnforcer:
    def __init__(self, session_factory, audit: AuditTrail):
        self.session_factory = session_factory
        self.audit = audit

    async def reserve(self, tenant_id: int, kind: ResourceKind, context=None) -> Reservation:
        """Atomically claim one unit. Raises QuotaExceeded with current/limit counts.

        `context` is the RequestContext of the actor, recorded on a denial.
        """
        if await self._try_increment(tenant_id, kind):
            reservation = Reservation(tenant_id=tenant_id, kind=kind)
            logger.debug(f"Reserved {kind.value} for tenant {tenant_id} ({reservation.id})")
            return reservation

        usage = await self.usage(tenant_id)
        if kind.value not in usage:
            raise BusinessException(f"Tenant {tenant_id} not found", status_code=404, code=404)
        current, limit = usage[kind.value]["used"], usage[kind.value]["limit"]
        logger.warning(f"Quota exceeded | Tenant: {tenant_id} | {kind.value}: {current}/{limit}")
        self.audit.deny(
            f"quota:{kind.value}",
            f"quota exceeded {current}/{limit}",
            context=context,
            target_tenant_id=tenant_id,
        )
        raise QuotaExceeded(kind.value, current, limit)

    async def _try_increment(self, tenant_id: int, kind: ResourceKind) -> bool:
        async with self.session_factory() as session:
            async with UnitOfWork(session) as uow:
                usage_repo = uow.get_repository(TenantUsageRepository)
                if await usage_repo.increment_if_below_limit(tenant_id, kind):
                    return True
                if await usage_repo.get_counter(tenant_id, kind) is not None:
                    return False

        # Counter row missing (tenant predates counters): seed it from the real count, retry once
        await self._initialize_counter(tenant_id, kind)
        async with self.session_factory() as session:
            async with UnitOfWork(session) as uow:
                usage_repo = uow.get_repository(TenantUsageRepository)
                return await usage_repo.increment_if_below_limit(tenant_id, kind)

    async def _initialize_counter(self, tenant_id: int, kind: ResourceKind) -> None:
        try:
            async with self.session_factory() as session:
                async with UnitOfWork(session) as uow:
                    if await uow.get_repository(TenantRepository).get_by_id(tenant_id) is None:
                        return
                    usage_repo = uow.get_repository(TenantUsageRepository)
                    actual = await usage_repo.count_resources(tenant_id, kind)
                    await usage_repo.set_used(tenant_id, kind, actual)
        except IntegrityError:
            # Another request created the counter first
            logger.debug(f"Counter for tenant {tenant_id} {kind.value} created concurrently")

    def commit(self, reservation: Reservation) -> None:
        """Mark the reservation as consumed by a created resource."""
        if reservation.state != PENDING:
            raise ValueError(f"Reservation {reservation.id} is already {reservation.state}")
        reservation.state = COMMITTED

    async def release(self, reservation: Reservation) -> None:
        """Give back an uncommitted unit. Idempotent."""
        if reservation.state != PENDING:
            return
        # RELEASING keeps a concurrent second release out; a failed decrement leaves the unit pending
        reservation.state = RELEASING
        try:
            await self.return_capacity(reservation.tenant_id, reservation.kind)
        except BaseException:
            reservation.state = PENDING
            raise
        reservation.state = RELEASED
        logger.info(f"Released {reservation.kind.value} reservation for tenant {reservation.tenant_id}")

    async def return_capacity(self, tenant_id: int, kind: ResourceKind) -> None:
        """Decrement the counter after a resource of this kind was deleted."""
        async with self.session_factory() as session:
            async with UnitOfWork(session) as uow:
                await uow.get_repository(TenantUsageRepository).decrement(tenant_id, kind)

    @asynccontextmanager
    async def claim(self, reservation: Reservation):
        """Commit the reservation if the block succeeds, release it otherwise (cancellation included)."""
        try:
            yield reservation
        except BaseException:
            await asyncio.shield(self.release(reservation))
            raise
        else:
            self.commit(reservation)

    async def usage(self, tenant_id: int) -> Dict[str, Dict[str, int]]:
        """{kind: {"used": n, "limit": m}}; empty when the tenant does not exist."""
        report = {}
        async with self.session_factory() as session:
            async with UnitOfWork(session) as uow:
                tenant = await uow.get_repository(TenantRepository).get_by_id(tenant_id)
                if tenant is None:
                    return report
                usage_repo = uow.get_repository(TenantUsageRepository)
                for kind in ResourceKind:
                    counter = await usage_repo.get_counter(tenant_id, kind)
                    used = counter.used if counter else await usage_repo.count_resources(tenant_id, kind)
                    report[kind.value] = {"used": used, "limit": tenant.limit_for(kind)}
        return report

    async def reconcile(self, tenant_id: int) -> Dict[str, Dict[str, int]]:
        """Raise counters that fell below the number of rows that actually exist.

        A counter is never lowered: units reserved by in-flight requests have
        no row yet, and dropping them would let later reservations pass the limit.
        """
        async with self.session_factory() as session:
            async with UnitOfWork(session) as uow:
                usage_repo = uow.get_repository(TenantUsageRepository)
                for kind in ResourceKind:
                    if await usage_repo.get_counter(tenant_id, kind) is None:
                        actual = await usage_repo.count_resources(tenant_id, kind)
                        await usage_repo.set_used(tenant_id, kind, actual)
                    else:
                        await usage_repo.raise_to_actual(tenant_id, kind)
        logger.info(f"Quota counters reconciled for tenant {tenant_id}")
        return await self.usage(tenant_id)
