"""Binds an access token to a trusted RequestContext."""

from typing import Optional
from framework.exceptions.handler import Unauthenticated
from framework.logging.logger import get_logger
from framework.repository.unit_of_work import UnitOfWork
from framework.security import RequestContext, Role, TokenCodec, claim_context_seal
from .repository import TenantRepository, UserRepository

logger = get_logger("resolver")

_SEAL = claim_context_seal()


def _sealed(tenant_id: Optional[int], user_id: int, role: Role) -> RequestContext:
    context = RequestContext(tenant_id=tenant_id, user_id=user_id, role=role)
    object.__setattr__(context, "_seal", _SEAL)
    return context


class TenantContextResolver:
    """
    Verifies the token, then re-reads the user and tenant on every call so that
    deleted users and suspended tenants lose access immediately, not at expiry.
    Every failure is the same Unauthenticated; the reason only reaches the logs.
    """

    def __init__(self, codec: TokenCodec, uow: UnitOfWork):
        self.codec = codec
        self.uow = uow

    async def resolve(self, token: Optional[str]) -> RequestContext:
        if not token:
            raise Unauthenticated("missing token")

        claims = self.codec.decode(token)

        user = await self.uow.get_repository(UserRepository).get_by_id(claims.user_id)
        if user is None:
            raise Unauthenticated(f"user {claims.user_id} no longer exists")
        if user.tenant_id != claims.tenant_id:
            raise Unauthenticated(f"user {claims.user_id} moved out of tenant {claims.tenant_id}")

        if claims.role is not Role.SUPER_ADMIN:
            tenant = await self.uow.get_repository(TenantRepository).get_by_id(claims.tenant_id)
            if tenant is None:
                raise Unauthenticated(f"tenant {claims.tenant_id} not found")
            if not tenant.is_active:
                raise Unauthenticated(f"tenant {claims.tenant_id} is {tenant.status.value}")

        return _sealed(tenant_id=claims.tenant_id, user_id=claims.user_id, role=claims.role)
