from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from framework.config import settings
from framework.logging.audit import AuditTrail
from framework.permissions import Action
from framework.repository.unit_of_work import UnitOfWork
from framework.response import ResponseModel
from framework.security import GuardedContext, Role
from apps.identity.gateway import get_audit_trail, get_quota_enforcer, get_uow, guard
from apps.identity.models import ResourceKind, SubscriptionTier, TenantStatus
from apps.identity.quota import QuotaEnforcer
from ..service import MemberService, TenantService, TierLimits, user_out

router = APIRouter()

class TenantCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    max_users: Optional[int] = Field(default=None, ge=0)
    max_projects: Optional[int] = Field(default=None, ge=0)
    admin_email: Optional[str] = Field(default=None, max_length=320)
    admin_password: Optional[str] = Field(default=None, min_length=8)

class TenantUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    subscription_tier: Optional[SubscriptionTier] = None
    max_users: Optional[int] = Field(default=None, ge=0)
    max_projects: Optional[int] = Field(default=None, ge=0)

class UserCreate(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=8)
    role: Role = Role.STANDARD_USER

class RoleUpdate(BaseModel):
    role: Role


def get_tier_limits() -> TierLimits:
    return TierLimits(settings.TIER_LIMITS)


def tenant_service(action: Action):
    def dependency(
        guarded: GuardedContext = Depends(guard(action)),
        uow: UnitOfWork = Depends(get_uow),
        tier_limits: TierLimits = Depends(get_tier_limits),
        audit: AuditTrail = Depends(get_audit_trail),
        quota: QuotaEnforcer = Depends(get_quota_enforcer),
    ) -> TenantService:
        return TenantService(uow, guarded, tier_limits, audit, quota)
    return dependency


def member_service(action: Action, resource_kind: Optional[ResourceKind] = None):
    def dependency(
        guarded: GuardedContext = Depends(guard(action, resource_kind)),
        uow: UnitOfWork = Depends(get_uow),
        quota: QuotaEnforcer = Depends(get_quota_enforcer),
    ) -> MemberService:
        return MemberService(uow, guarded, quota)
    return dependency


# --- Tenants ---

@router.get("")
async def list_tenants(
    limit: int = 100,
    offset: int = 0,
    service: TenantService = Depends(tenant_service(Action.TENANT_LIST))
):
    return ResponseModel.success(data=await service.list_tenants(limit=limit, offset=offset))

@router.post("")
async def create_tenant(
    payload: TenantCreate,
    service: TenantService = Depends(tenant_service(Action.TENANT_CREATE))
):
    tenant = await service.create_tenant(
        payload.name,
        subscription_tier=payload.subscription_tier,
        max_users=payload.max_users,
        max_projects=payload.max_projects,
        admin_email=payload.admin_email,
        admin_password=payload.admin_password
    )
    return ResponseModel.success(data=tenant)

@router.get("/{tenant_id}")
async def get_tenant(
    tenant_id: int,
    service: TenantService = Depends(tenant_service(Action.TENANT_READ))
):
    return ResponseModel.success(data=await service.get_tenant())

@router.patch("/{tenant_id}")
async def update_tenant(
    tenant_id: int,
    payload: TenantUpdate,
    service: TenantService = Depends(tenant_service(Action.TENANT_UPDATE))
):
    tenant = await service.update_tenant(payload.model_dump(exclude_unset=True))
    return ResponseModel.success(data=tenant)

@router.post("/{tenant_id}/suspend")
async def suspend_tenant(
    tenant_id: int,
    service: TenantService = Depends(tenant_service(Action.TENANT_SET_STATUS))
):
    return ResponseModel.success(data=await service.set_status(TenantStatus.SUSPENDED))

@router.post("/{tenant_id}/activate")
async def activate_tenant(
    tenant_id: int,
    service: TenantService = Depends(tenant_service(Action.TENANT_SET_STATUS))
):
    return ResponseModel.success(data=await service.set_status(TenantStatus.ACTIVE))

@router.get("/{tenant_id}/usage")
async def get_usage(
    tenant_id: int,
    service: TenantService = Depends(tenant_service(Action.TENANT_READ))
):
    return ResponseModel.success(data=await service.usage())

@router.post("/{tenant_id}/usage/reconcile")
async def reconcile_usage(
    tenant_id: int,
    service: TenantService = Depends(tenant_service(Action.TENANT_UPDATE))
):
    return ResponseModel.success(data=await service.reconcile_usage())


# --- Users ---

@router.get("/{tenant_id}/users")
async def list_users(
    tenant_id: int,
    limit: int = 100,
    offset: int = 0,
    service: MemberService = Depends(member_service(Action.USER_READ))
):
    users = await service.list_users(limit=limit, offset=offset)
    return ResponseModel.success(data=[user_out(user) for user in users])

@router.post("/{tenant_id}/users")
async def create_user(
    tenant_id: int,
    payload: UserCreate,
    service: MemberService = Depends(member_service(Action.USER_CREATE, ResourceKind.USER))
):
    user = await service.create_user(payload.email, payload.password, payload.role)
    return ResponseModel.success(data=user_out(user))

@router.get("/{tenant_id}/users/{user_id}")
async def get_user(
    tenant_id: int,
    user_id: int,
    service: MemberService = Depends(member_service(Action.USER_READ))
):
    return ResponseModel.success(data=user_out(await service.get_user(user_id)))

@router.patch("/{tenant_id}/users/{user_id}/role")
async def update_user_role(
    tenant_id: int,
    user_id: int,
    payload: RoleUpdate,
    service: MemberService = Depends(member_service(Action.USER_UPDATE))
):
    return ResponseModel.success(data=user_out(await service.update_role(user_id, payload.role)))

@router.delete("/{tenant_id}/users/{user_id}")
async def delete_user(
    tenant_id: int,
    user_id: int,
    service: MemberService = Depends(member_service(Action.USER_DELETE))
):
    await service.delete_user(user_id)
    return ResponseModel.success(data={"id": user_id})
