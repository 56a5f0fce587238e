from typing import Optional
from framework.exceptions.handler import InvalidCredentials
from framework.logging.audit import ALLOW, AuditTrail
from framework.logging.logger import get_logger
from framework.repository.unit_of_work import UnitOfWork
from framework.security import IssuedToken, Role, TokenCodec, get_password_hash, verify_password
from .models import User
from .repository import TenantRepository, UserRepository

logger = get_logger("identity_service")

LOGIN_ACTION = "auth:login"

_dummy_hash: Optional[str] = None


def _timing_dummy_hash() -> str:
    """Hash verified for unknown emails so both failure paths cost one bcrypt check."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = get_password_hash("not-a-real-password")
    return _dummy_hash


class IdentityService:
    def __init__(self, uow: UnitOfWork, codec: TokenCodec, audit: AuditTrail):
        self.uow = uow
        self.codec = codec
        self.audit = audit

    async def login(self, email: str, password: str) -> IssuedToken:
        """Verify credentials and issue a 24h access token. Nothing is persisted."""
        user_repo = self.uow.get_repository(UserRepository)
        user = await user_repo.get_by_email(email)

        if user is None:
            verify_password(password, _timing_dummy_hash())
            self._fail(email, "unknown email")
        if not verify_password(password, user.hashed_password):
            self._fail(email, "wrong password", user)

        if user.role is not Role.SUPER_ADMIN:
            tenant = await self.uow.get_repository(TenantRepository).get_by_id(user.tenant_id)
            if tenant is None or not tenant.is_active:
                self._fail(email, "tenant missing or suspended", user)

        issued = self.codec.issue(user.id, user.tenant_id, user.role)
        self.audit.record(
            action=LOGIN_ACTION,
            outcome=ALLOW,
            actor_id=user.id,
            actor_role=user.role.value,
            target_tenant_id=user.tenant_id,
        )
        logger.info(f"User {user.id} logged in | Tenant: {user.tenant_id} | Role: {user.role.value}")
        return issued

    def _fail(self, email: str, reason: str, user: Optional[User] = None):
        logger.info(f"Login failed for {email}: {reason}")
        self.audit.deny(LOGIN_ACTION, reason, target_tenant_id=getattr(user, "tenant_id", None))
        raise InvalidCredentials()

    async def ensure_super_admin(self, email: str, password: str) -> User:
        """Create the tenant-less Super Admin if it does not exist yet."""
        user_repo = self.uow.get_repository(UserRepository)
        existing = await user_repo.get_by_email(email)
        if existing is not None:
            if existing.role is not Role.SUPER_ADMIN:
                logger.warning(f"Bootstrap email {email} belongs to a non super admin user; skipped")
            return existing

        user = User(
            email=email.strip().lower(),
            hashed_password=get_password_hash(password),
            tenant_id=None,
            role=Role.SUPER_ADMIN,
        )
        await user_repo.create(user)
        await self.uow.commit()
        logger.info(f"Super admin {user.email} created")
        return user
