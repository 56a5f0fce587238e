from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional
from jose import jwt, JWTError
from passlib.context import CryptContext
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from framework.config import settings
from framework.exceptions.handler import Unauthenticated

# Tokens are valid for exactly 24 hours after issuance
ACCESS_TOKEN_LIFETIME = timedelta(hours=24)

# 1. Password hashing (BCrypt)
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.PASSWORD_HASH_ROUNDS,
)

# 2. OAuth2 scheme and token URL
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_AUTH_PREFIX}/login", auto_error=False)


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    TENANT_ADMIN = "tenant_admin"
    STANDARD_USER = "standard_user"


# Only contexts carrying this object were produced by the tenant context resolver
_RESOLVER_SEAL = object()
_seal_claimed = False


def claim_context_seal() -> object:
    """Hand the seal to the tenant context resolver. Works once per process."""
    global _seal_claimed
    if _seal_claimed:
        raise RuntimeError("context seal already claimed")
    _seal_claimed = True
    return _RESOLVER_SEAL


@dataclass(frozen=True)
class RequestContext:
    """Trusted identity of one request: tenant, user and role.

    tenant_id is None only for the Super Admin, who has system scope.
    """
    tenant_id: Optional[int]
    user_id: int
    role: Role
    # Not an init argument, so dataclasses.replace() yields an unsealed copy
    _seal: object = field(default=None, init=False, repr=False, compare=False)

    @property
    def is_super_admin(self) -> bool:
        return self.role is Role.SUPER_ADMIN

    @property
    def trusted(self) -> bool:
        return self._seal is _RESOLVER_SEAL


# --- Helpers ---

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    tenant_id: Optional[int]
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    token: str
    claims: TokenClaims


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Signs and verifies access tokens. Holds the signing secret passed in at startup."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        lifetime: timedelta = ACCESS_TOKEN_LIFETIME,
        clock: Callable[[], datetime] = utcnow,
    ):
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.lifetime = lifetime
        self.clock = clock

    def issue(self, user_id: int, tenant_id: Optional[int], role: Role) -> IssuedToken:
        """Create a signed token valid for [now, now + lifetime)."""
        issued_at = self.clock().replace(microsecond=0)
        expires_at = issued_at + self.lifetime
        payload = {
            "sub": str(user_id),
            "tid": tenant_id,
            "role": role.value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret_key, algorithm=self.algorithm)
        claims = TokenClaims(
            user_id=user_id,
            tenant_id=tenant_id,
            role=role,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        return IssuedToken(token=token, claims=claims)

    def decode(self, token: str) -> TokenClaims:
        """Verify signature and expiry. Raises Unauthenticated."""
        try:
            # Expiry is checked below against our own clock, with an exclusive bound
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise Unauthenticated(f"invalid token: {e}")

        try:
            user_id = int(payload["sub"])
            tenant_id = payload.get("tid")
            if tenant_id is not None:
                tenant_id = int(tenant_id)
            role = Role(payload["role"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError):
            raise Unauthenticated("malformed token claims")

        if self.clock() >= expires_at:
            raise Unauthenticated("token expired")
        if (tenant_id is None) != (role is Role.SUPER_ADMIN):
            raise Unauthenticated("tenant claim does not match role")

        return TokenClaims(
            user_id=user_id,
            tenant_id=tenant_id,
            role=role,
            issued_at=issued_at,
            expires_at=expires_at,
        )


# --- FastAPI dependencies ---

def get_token_codec() -> TokenCodec:
    return TokenCodec(settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def get_token_from_request(
    request: Request,
    token_from_header: Optional[str] = Depends(oauth2_scheme)
) -> Optional[str]:
    """
    Get token from request: Authorization header first, then cookie.
    """
    if token_from_header:
        return token_from_header
    return request.cookies.get(settings.ACCESS_TOKEN_COOKIE_NAME)


class GuardedContext:
    """What the authorization gateway hands to a handler.

    `tenant_id` is the tenant the handler's storage access is scoped to: the
    caller's own tenant, or for the Super Admin the targeted tenant (None means
    all tenants). Read-only; a pending ownership decision is settled only
    through `require_ownership`.
    """
    __slots__ = ("_context", "_action", "_target_tenant_id", "_reservation", "_ownership_pending", "_evaluator")

    def __init__(
        self,
        context: RequestContext,
        action: Enum,
        target_tenant_id: Optional[int],
        reservation: Optional[object] = None,
        ownership_pending: bool = False,
        evaluator: Optional[object] = None,
    ):
        if not isinstance(context, RequestContext) or not context.trusted:
            raise Unauthenticated("guarded context without a resolved identity")
        if ownership_pending and evaluator is None:
            raise ValueError("a pending ownership decision needs an evaluator")
        self._context = context
        self._action = action
        self._target_tenant_id = target_tenant_id
        self._reservation = reservation
        self._ownership_pending = ownership_pending
        self._evaluator = evaluator

    def __repr__(self) -> str:
        return (
            f"GuardedContext(context={self._context!r}, action={self._action!r}, "
            f"target_tenant_id={self._target_tenant_id!r}, ownership_pending={self._ownership_pending!r})"
        )

    @staticmethod
    def scope_for(context: RequestContext, target_tenant_id: Optional[int]) -> Optional[int]:
        if context.is_super_admin:
            return target_tenant_id
        return context.tenant_id

    @property
    def context(self) -> RequestContext:
        return self._context

    @property
    def action(self) -> Enum:
        return self._action

    @property
    def target_tenant_id(self) -> Optional[int]:
        return self._target_tenant_id

    @property
    def reservation(self):
        return self._reservation

    @property
    def ownership_pending(self) -> bool:
        return self._ownership_pending

    @property
    def tenant_id(self) -> Optional[int]:
        return self.scope_for(self._context, self._target_tenant_id)

    @property
    def user_id(self) -> int:
        return self._context.user_id

    @property
    def role(self) -> Role:
        return self._context.role

    def require_ownership(self, ownership: Callable[[RequestContext], bool]) -> None:
        """Settle a limited-access decision once the resource is loaded. Raises Forbidden."""
        if not self._ownership_pending:
            return
        self._evaluator.confirm_ownership(self._context, self._action, self._target_tenant_id, ownership)
        self._ownership_pending = False
