from typing import Dict, List, Optional
from sqlalchemy.exc import IntegrityError
from framework.exceptions.handler import BusinessException, Forbidden
from framework.logging.audit import ALLOW, AuditTrail
from framework.logging.logger import get_logger
from framework.repository.unit_of_work import UnitOfWork
from framework.security import GuardedContext, Role, get_password_hash
from apps.identity.models import ResourceKind, SubscriptionTier, Tenant, TenantStatus, User
from apps.identity.quota import QuotaEnforcer
from apps.identity.repository import (
    TenantRepository,
    TenantUsageRepository,
    TenantUserRepository,
    UserRepository,
)

logger = get_logger("tenant_service")


class TierLimits:
    """Subscription tier -> default (max_users, max_projects), loaded from settings at startup."""

    def __init__(self, limits: Dict[str, tuple]):
        missing = {tier.value for tier in SubscriptionTier} - set(limits)
        if missing:
            raise ValueError(f"No limits configured for tiers: {sorted(missing)}")
        self._limits = dict(limits)

    def for_tier(self, tier: SubscriptionTier) -> tuple:
        return self._limits[SubscriptionTier(tier).value]


def user_out(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "tenant_id": user.tenant_id,
        "role": user.role.value,
        "created_at": user.created_at,
    }


class TenantService:
    def __init__(
        self,
        uow: UnitOfWork,
        guarded: GuardedContext,
        tier_limits: TierLimits,
        audit: AuditTrail,
        quota: Optional[QuotaEnforcer] = None,
    ):
        self.uow = uow
        self.guarded = guarded
        self.tier_limits = tier_limits
        self.audit = audit
        self.quota = quota

    @property
    def tenants(self) -> TenantRepository:
        return self.uow.get_repository(TenantRepository)

    async def list_tenants(self, limit: int = 100, offset: int = 0) -> List[Tenant]:
        """Super Admin only (enforced by the gateway). Each tenant returned is audited."""
        tenants = await self.tenants.get_all(limit=limit, offset=offset)
        for tenant in tenants:
            self.audit.record(
                action=self.guarded.action.value,
                outcome=ALLOW,
                actor_id=self.guarded.user_id,
                actor_role=self.guarded.role.value,
                target_tenant_id=tenant.id,
                cross_tenant=True,
            )
        return tenants

    async def create_tenant(
        self,
        name: str,
        subscription_tier: SubscriptionTier = SubscriptionTier.FREE,
        max_users: Optional[int] = None,
        max_projects: Optional[int] = None,
        admin_email: Optional[str] = None,
        admin_password: Optional[str] = None,
    ) -> Tenant:
        """Create a tenant with its quota counters and, optionally, its first Tenant Admin."""
        if await self.tenants.get_by_name(name):
            raise BusinessException("Tenant name already registered", code=400, status_code=400)
        if (admin_email is None) != (admin_password is None):
            raise BusinessException("admin_email and admin_password go together", code=400, status_code=400)

        default_users, default_projects = self.tier_limits.for_tier(subscription_tier)
        tenant = Tenant(
            name=name,
            subscription_tier=subscription_tier,
            max_users=default_users if max_users is None else max_users,
            max_projects=default_projects if max_projects is None else max_projects,
            status=TenantStatus.ACTIVE,
        )
        if admin_email is not None and tenant.max_users < 1:
            raise BusinessException("max_users must allow the tenant admin", code=400, status_code=400)

        try:
            await self.tenants.create(tenant)
            await self.uow.flush()

            users_used = 0
            if admin_email is not None:
                await self.uow.get_repository(UserRepository).create(User(
                    email=admin_email.strip().lower(),
                    hashed_password=get_password_hash(admin_password),
                    tenant_id=tenant.id,
                    role=Role.TENANT_ADMIN,
                ))
                users_used = 1

            usage_repo = self.uow.get_repository(TenantUsageRepository)
            await usage_repo.set_used(tenant.id, ResourceKind.USER, users_used)
            await usage_repo.set_used(tenant.id, ResourceKind.PROJECT, 0)
            await self.uow.commit()
        except IntegrityError as e:
            await self.uow.rollback()
            logger.warning(f"Tenant creation conflict: {e.orig if hasattr(e, 'orig') else e}")
            raise BusinessException("Tenant creation failed: name or email already in use", code=400, status_code=400)

        logger.info(
            f"Tenant {tenant.name} ({tenant.id}) created | Tier: {tenant.subscription_tier.value} | "
            f"Limits: users={tenant.max_users} projects={tenant.max_projects}"
        )
        return tenant

    async def get_tenant(self) -> Tenant:
        tenant = await self.tenants.get_by_id(self.guarded.tenant_id)
        if tenant is None:
            raise BusinessException("Tenant not found", code=404, status_code=404)
        return tenant

    async def update_tenant(self, changes: dict) -> Tenant:
        """
        Name, tier and limits. A tier change re-derives both limits unless the
        same request overrides them; no limit may drop below current usage.

        The counter rows are locked before the tenant row changes and stay
        locked until commit, so no reservation can slip in between the usage
        check and the new limit.
        """
        tenant = await self.get_tenant()
        usage_repo = self.uow.get_repository(TenantUsageRepository)
        counters = await usage_repo.lock_counters(tenant.id)

        if "name" in changes and changes["name"] != tenant.name:
            if await self.tenants.get_by_name(changes["name"]):
                raise BusinessException("Tenant name already registered", code=400, status_code=400)
            tenant.name = changes["name"]

        if "subscription_tier" in changes:
            tenant.subscription_tier = SubscriptionTier(changes["subscription_tier"])
            tenant.max_users, tenant.max_projects = self.tier_limits.for_tier(tenant.subscription_tier)
        if changes.get("max_users") is not None:
            tenant.max_users = changes["max_users"]
        if changes.get("max_projects") is not None:
            tenant.max_projects = changes["max_projects"]

        for kind in ResourceKind:
            counter = counters.get(kind)
            used = counter.used if counter else await usage_repo.count_resources(tenant.id, kind)
            limit = tenant.limit_for(kind)
            if limit < used:
                await self.uow.rollback()
                raise BusinessException(
                    f"{kind.value} limit {limit} is below current usage {used}",
                    code=400,
                    status_code=400,
                    detail={"resource": kind.value, "current": used, "limit": limit},
                )

        await self.tenants.update(tenant)
        await self.uow.commit()
        logger.info(f"Tenant {tenant.id} updated by user {self.guarded.user_id}: {sorted(changes)}")
        return tenant

    async def set_status(self, status: TenantStatus) -> Tenant:
        """Suspension takes effect on the tenant's next request: the resolver re-reads status."""
        tenant = await self.get_tenant()
        tenant.status = TenantStatus(status)
        await self.tenants.update(tenant)
        await self.uow.commit()
        logger.warning(f"Tenant {tenant.id} status set to {tenant.status.value} by user {self.guarded.user_id}")
        return tenant

    async def usage(self) -> Dict[str, Dict[str, int]]:
        tenant = await self.get_tenant()
        return await self.quota.usage(tenant.id)

    async def reconcile_usage(self) -> Dict[str, Dict[str, int]]:
        tenant = await self.get_tenant()
        return await self.quota.reconcile(tenant.id)


class MemberService:
    """Users of the guarded tenant."""

    def __init__(self, uow: UnitOfWork, guarded: GuardedContext, quota: Optional[QuotaEnforcer] = None):
        self.uow = uow
        self.guarded = guarded
        self.quota = quota

    @property
    def members(self) -> TenantUserRepository:
        return self.uow.get_repository(TenantUserRepository, self.guarded)

    async def list_users(self, limit: int = 100, offset: int = 0) -> List[User]:
        return await self.members.get_all(limit=limit, offset=offset)

    async def get_user(self, user_id: int) -> User:
        user = await self.members.get_by_id(user_id)
        if user is None:
            raise BusinessException("User not found", code=404, status_code=404)
        return user

    async def create_user(self, email: str, password: str, role: Role = Role.STANDARD_USER) -> User:
        """Consumes the user reservation taken by the gateway."""
        async with self.quota.claim(self.guarded.reservation):
            _check_assignable(role)
            email = email.strip().lower()
            if await self.uow.get_repository(UserRepository).get_by_email(email):
                raise BusinessException("Email already registered", code=4001, status_code=400)
            user = User(email=email, hashed_password=get_password_hash(password), role=role)
            try:
                await self.members.create(user)
                await self.uow.commit()
            except IntegrityError:
                await self.uow.rollback()
                raise BusinessException("Email already registered", code=4001, status_code=400)
            except Exception:
                await self.uow.rollback()
                raise

        logger.info(f"User {user.id} created in tenant {user.tenant_id} with role {user.role.value}")
        return user

    async def update_role(self, user_id: int, role: Role) -> User:
        _check_assignable(role)
        user = await self.get_user(user_id)
        user.role = role
        await self.members.update(user)
        await self.uow.commit()
        logger.info(f"User {user.id} role set to {role.value} by user {self.guarded.user_id}")
        return user

    async def delete_user(self, user_id: int) -> None:
        if user_id == self.guarded.user_id:
            raise BusinessException("Cannot delete yourself", code=400, status_code=400)
        user = await self.get_user(user_id)
        try:
            await self.members.delete(user.id)
            await self.uow.commit()
        except IntegrityError:
            await self.uow.rollback()
            raise BusinessException("User still owns projects or tasks", code=409, status_code=409)
        await self.quota.return_capacity(user.tenant_id, ResourceKind.USER)
        logger.info(f"User {user_id} deleted from tenant {user.tenant_id}")


def _check_assignable(role: Role) -> None:
    # The Super Admin is tenant-less and only exists through bootstrap
    if Role(role) is Role.SUPER_ADMIN:
        raise Forbidden("The super_admin role cannot be assigned")
