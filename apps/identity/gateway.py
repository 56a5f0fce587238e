"""
Authorization gateway: the single entry point that turns a bearer token into a
GuardedContext. Handlers get tenant-scoped storage only through that object.

    @router.post("")
    async def create_project(guarded: GuardedContext = Depends(guard(Action.PROJECT_CREATE, ResourceKind.PROJECT))):
        ...
"""

from typing import Optional
from fastapi import Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession
from framework.database.manager import DatabaseManager
from framework.exceptions.handler import BusinessException, Unauthenticated
from framework.logging.audit import AuditTrail, audit_trail
from framework.logging.logger import get_logger
from framework.permissions import Action, Decision, OwnershipCheck, PermissionEvaluator
from framework.repository.unit_of_work import UnitOfWork
from framework.security import GuardedContext, TokenCodec, get_token_codec, get_token_from_request
from .models import ResourceKind
from .quota import QuotaEnforcer
from .resolver import TenantContextResolver

logger = get_logger("gateway")


class AuthorizationGateway:
    def __init__(
        self,
        resolver: TenantContextResolver,
        evaluator: PermissionEvaluator,
        quota: QuotaEnforcer,
        audit: AuditTrail,
    ):
        self.resolver = resolver
        self.evaluator = evaluator
        self.quota = quota
        self.audit = audit

    async def guard(
        self,
        token: Optional[str],
        action: Action,
        target_tenant_id: Optional[int],
        resource_kind: Optional[ResourceKind] = None,
        ownership: Optional[OwnershipCheck] = None,
    ) -> GuardedContext:
        """Resolve, authorize, then reserve quota. Raises Unauthenticated, Forbidden or QuotaExceeded."""
        try:
            ctx = await self.resolver.resolve(token)
        except Unauthenticated as e:
            logger.info(f"Unauthenticated {action.value} -> tenant {target_tenant_id}: {e.reason}")
            self.audit.deny(action.value, e.reason, target_tenant_id=target_tenant_id)
            raise

        decision = self.evaluator.authorize(ctx, action, target_tenant_id, ownership)

        reservation = None
        if resource_kind is not None:
            scope = GuardedContext.scope_for(ctx, target_tenant_id)
            if scope is None:
                raise ValueError(f"{action.value} needs a target tenant to reserve {resource_kind.value}")
            reservation = await self.quota.reserve(scope, resource_kind, context=ctx)

        return GuardedContext(
            context=ctx,
            action=action,
            target_tenant_id=target_tenant_id,
            reservation=reservation,
            ownership_pending=decision is Decision.OWNERSHIP_REQUIRED,
            evaluator=self.evaluator,
        )


# --- FastAPI dependencies ---

async def get_db():
    manager = DatabaseManager.get_instance()
    async for session in manager.mysql.get_session():
        yield session


def get_uow(db: AsyncSession = Depends(get_db)) -> UnitOfWork:
    return UnitOfWork(session=db)


def get_session_factory():
    """Factory for the short transactions quota reservations run in."""
    return DatabaseManager.get_instance().mysql.session_factory


def get_audit_trail() -> AuditTrail:
    return audit_trail


def get_quota_enforcer(
    session_factory=Depends(get_session_factory),
    audit: AuditTrail = Depends(get_audit_trail),
) -> QuotaEnforcer:
    return QuotaEnforcer(session_factory, audit)


def get_gateway(
    uow: UnitOfWork = Depends(get_uow),
    codec: TokenCodec = Depends(get_token_codec),
    quota: QuotaEnforcer = Depends(get_quota_enforcer),
    audit: AuditTrail = Depends(get_audit_trail),
) -> AuthorizationGateway:
    return AuthorizationGateway(
        resolver=TenantContextResolver(codec, uow),
        evaluator=PermissionEvaluator(audit),
        quota=quota,
        audit=audit,
    )


def _target_tenant(request: Request) -> Optional[int]:
    raw = request.path_params.get("tenant_id")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise BusinessException("Invalid tenant id", status_code=422, code=422)


def guard(action: Action, resource_kind: Optional[ResourceKind] = None):
    """
    Dependency factory. The target tenant is the `tenant_id` path parameter
    (None for tenant-less routes). A reservation still pending when the request
    ends (handler error, validation error, disconnect) is released.
    """
    async def dependency(
        request: Request,
        token: Optional[str] = Depends(get_token_from_request),
        gateway: AuthorizationGateway = Depends(get_gateway),
    ):
        guarded = await gateway.guard(token, action, _target_tenant(request), resource_kind)
        try:
            yield guarded
        finally:
            if guarded.reservation is not None and guarded.reservation.pending:
                await gateway.quota.release(guarded.reservation)

    return dependency
