"""Quota enforcer tests: atomic reservation, release, concurrency, reconciliation."""
import asyncio
import pytest
from sqlalchemy import delete
from framework.exceptions.handler import BusinessException, QuotaExceeded
from framework.logging.audit import DENY
from framework.repository.unit_of_work import UnitOfWork
from framework.security import RequestContext, Role
from apps.identity.models import ResourceKind, TenantUsage
from apps.identity.quota import COMMITTED, PENDING, RELEASED
from apps.identity.repository import TenantRepository, TenantUsageRepository


class TestReserve:

    @pytest.mark.asyncio
    async def test_reserve_up_to_limit_then_rejected(self, quota, world, used):
        """acme may hold 3 projects; the 4th reservation reports 3/3."""
        for _ in range(3):
            reservation = await quota.reserve(world.acme.id, ResourceKind.PROJECT)
            assert reservation.state == PENDING

        with pytest.raises(QuotaExceeded) as exc:
            await quota.reserve(world.acme.id, ResourceKind.PROJECT)

        assert exc.value.current == 3
        assert exc.value.limit == 3
        assert exc.value.status_code == 403
        assert exc.value.detail == {"resource": "project", "current": 3, "limit": 3}
        assert await used(world.acme.id, ResourceKind.PROJECT) == 3

    @pytest.mark.asyncio
    async def test_rejection_is_audited(self, quota, world, audit_sink):
        # acme has 2 users seeded, limit 5
        for _ in range(3):
            await quota.reserve(world.acme.id, ResourceKind.USER)
        audit_sink.events.clear()

        actor = RequestContext(tenant_id=world.acme.id, user_id=world.acme_admin.id, role=Role.TENANT_ADMIN)
        with pytest.raises(QuotaExceeded):
            await quota.reserve(world.acme.id, ResourceKind.USER, context=actor)

        [event] = audit_sink.filter(outcome=DENY)
        assert event.action == "quota:user"
        assert event.actor_id == world.acme_admin.id
        assert event.actor_role == "tenant_admin"
        assert event.target_tenant_id == world.acme.id
        assert event.cross_tenant is False

    @pytest.mark.asyncio
    async def test_zero_limit_rejects_first_reservation(self, quota, world, session_factory):
        async with session_factory() as session:
            async with UnitOfWork(session) as uow:
                tenants = uow.get_repository(TenantRepository)
                acme = await tenants.get_by_id(world.acme.id)
                acme.max_projects = 0
                await tenants.update(acme)

        with pytest.raises(QuotaExceeded) as exc:
            await quota.reserve(world.acme.id, ResourceKind.PROJECT)
        assert (exc.value.current, exc.value.limit) == (0, 0)

    @pytest.mark.asyncio
    async def test_tenants_are_independent(self, quota, world, used):
        for _ in range(3):
            await quota.reserve(world.acme.id, ResourceKind.PROJECT)

        await quota.reserve(world.demo.id, ResourceKind.PROJECT)

        assert await used(world.demo.id, ResourceKind.PROJECT) == 1
        assert await used(world.acme.id, ResourceKind.PROJECT) == 3

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, quota, world):
        with pytest.raises(BusinessException) as exc:
            await quota.reserve(9999, ResourceKind.PROJECT)
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_counter_seeded_from_actual_rows(self, quota, world, session_factory, used):
        async with session_factory() as session:
            async with UnitOfWork(session):
                await session.execute(delete(TenantUsage).where(TenantUsage.tenant_id == world.acme.id))

        await quota.reserve(world.acme.id, ResourceKind.USER)

        # 2 seeded acme users + the new reservation
        assert await used(world.acme.id, ResourceKind.USER) == 3


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_exceed_limit(self, quota, world, used):
        """10 simultaneous attempts against a limit of 3: exactly 3 succeed."""
        results = await asyncio.gather(
            *[quota.reserve(world.acme.id, ResourceKind.PROJECT) for _ in range(10)],
            return_exceptions=True
        )

        granted = [r for r in results if not isinstance(r, BaseException)]
        rejected = [r for r in results if isinstance(r, QuotaExceeded)]
        assert len(granted) == 3
        assert len(rejected) == 7
        assert await used(world.acme.id, ResourceKind.PROJECT) == 3

    @pytest.mark.asyncio
    async def test_concurrent_releases_restore_capacity(self, quota, world, used):
        reservations = [await quota.reserve(world.acme.id, ResourceKind.PROJECT) for _ in range(3)]

        await asyncio.gather(*[quota.release(r) for r in reservations + reservations])

        assert await used(world.acme.id, ResourceKind.PROJECT) == 0


class TestRelease:

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, quota, world, used):
        reservation = await quota.reserve(world.demo.id, ResourceKind.PROJECT)

        await quota.release(reservation)
        await quota.release(reservation)

        assert reservation.state == RELEASED
        assert await used(world.demo.id, ResourceKind.PROJECT) == 0

    @pytest.mark.asyncio
    async def test_release_after_commit_is_noop(self, quota, world, used):
        reservation = await quota.reserve(world.demo.id, ResourceKind.PROJECT)
        quota.commit(reservation)

        await quota.release(reservation)

        assert reservation.state == COMMITTED
        assert await used(world.demo.id, ResourceKind.PROJECT) == 1

    @pytest.mark.asyncio
    async def test_commit_twice_refused(self, quota, world):
        reservation = await quota.reserve(world.demo.id, ResourceKind.PROJECT)
        quota.commit(reservation)
        with pytest.raises(ValueError):
            quota.commit(reservation)

    @pytest.mark.asyncio
    async def test_released_capacity_can_be_reserved_again(self, quota, world):
        reservations = [await quota.reserve(world.acme.id, ResourceKind.PROJECT) for _ in range(3)]
        await quota.release(reservations[0])

        again = await quota.reserve(world.acme.id, ResourceKind.PROJECT)
        assert again.pending

    @pytest.mark.asyncio
    async def test_failed_decrement_keeps_reservation_pending(self, quota, world, used, monkeypatch):
        """A release whose decrement fails can be retried; the unit is not lost."""
        reservation = await quota.reserve(world.demo.id, ResourceKind.PROJECT)
        return_capacity = quota.return_capacity

        async def unavailable(tenant_id, kind):
            raise ConnectionError("database unavailable")

        monkeypatch.setattr(quota, "return_capacity", unavailable)
        with pytest.raises(ConnectionError):
            await quota.release(reservation)

        assert reservation.state == PENDING
        assert await used(world.demo.id, ResourceKind.PROJECT) == 1

        monkeypatch.setattr(quota, "return_capacity", return_capacity)
        await quota.release(reservation)

        assert reservation.state == RELEASED
        assert await used(world.demo.id, ResourceKind.PROJECT) == 0


class TestClaim:

    @pytest.mark.asyncio
    async def test_claim_commits_on_success(self, quota, world, used):
        reservation = await quota.reserve(world.demo.id, ResourceKind.PROJECT)

        async with quota.claim(reservation):
            pass

        assert reservation.state == COMMITTED
        assert await used(world.demo.id, ResourceKind.PROJECT) == 1

    @pytest.mark.asyncio
    async def test_claim_releases_on_error(self, quota, world, used):
        reservation = await quota.reserve(world.demo.id, ResourceKind.PROJECT)

        with pytest.raises(RuntimeError):
            async with quota.claim(reservation):
                raise RuntimeError("storage failed")

        assert reservation.state == RELEASED
        assert await used(world.demo.id, ResourceKind.PROJECT) == 0

    @pytest.mark.asyncio
    async def test_claim_releases_on_cancellation(self, quota, world, used):
        reservation = await quota.reserve(world.demo.id, ResourceKind.PROJECT)

        async def slow_create():
            async with quota.claim(reservation):
                await asyncio.sleep(10)

        task = asyncio.create_task(slow_create())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert reservation.state == RELEASED
        assert await used(world.demo.id, ResourceKind.PROJECT) == 0


class TestUsageAndReconcile:

    @pytest.mark.asyncio
    async def test_usage_report(self, quota, world):
        report = await quota.usage(world.demo.id)
        assert report == {
            "user": {"used": 3, "limit": 5},
            "project": {"used": 0, "limit": 5},
        }

    @pytest.mark.asyncio
    async def test_usage_of_unknown_tenant_is_empty(self, quota, world):
        assert await quota.usage(9999) == {}

    @pytest.mark.asyncio
    async def test_reconcile_never_lowers_counters(self, quota, world, session_factory):
        async with session_factory() as session:
            async with UnitOfWork(session) as uow:
                usage_repo = uow.get_repository(TenantUsageRepository)
                await usage_repo.set_used(world.demo.id, ResourceKind.USER, 5)
                await usage_repo.set_used(world.demo.id, ResourceKind.PROJECT, 4)

        report = await quota.reconcile(world.demo.id)

        assert report["user"]["used"] == 5
        assert report["project"]["used"] == 4

    @pytest.mark.asyncio
    async def test_reconcile_raises_counters_below_actual_counts(self, quota, world, session_factory):
        async with session_factory() as session:
            async with UnitOfWork(session) as uow:
                await uow.get_repository(TenantUsageRepository).set_used(world.demo.id, ResourceKind.USER, 1)

        report = await quota.reconcile(world.demo.id)

        assert report["user"] == {"used": 3, "limit": 5}
        assert report["project"] == {"used": 0, "limit": 5}

    @pytest.mark.asyncio
    async def test_reconcile_keeps_in_flight_reservations(self, quota, world, used):
        """Reservations without a row yet still count: reserve, reconcile, reserve stays within the limit."""
        in_flight = [await quota.reserve(world.acme.id, ResourceKind.PROJECT) for _ in range(3)]

        await quota.reconcile(world.acme.id)

        with pytest.raises(QuotaExceeded):
            await quota.reserve(world.acme.id, ResourceKind.PROJECT)
        assert all(r.pending for r in in_flight)
        assert await used(world.acme.id, ResourceKind.PROJECT) == 3

    @pytest.mark.asyncio
    async def test_reconcile_seeds_missing_counters(self, quota, world, session_factory):
        async with session_factory() as session:
            async with UnitOfWork(session):
                await session.execute(delete(TenantUsage).where(TenantUsage.tenant_id == world.acme.id))

        report = await quota.reconcile(world.acme.id)

        assert report["user"] == {"used": 2, "limit": 5}
        assert report["project"] == {"used": 0, "limit": 3}
