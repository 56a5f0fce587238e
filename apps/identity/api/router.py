from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from framework.config import settings
from framework.logging.audit import AuditTrail
from framework.repository.unit_of_work import UnitOfWork
from framework.response import ResponseModel
from framework.security import TokenCodec, get_token_codec
from ..gateway import get_audit_trail, get_uow
from ..service import IdentityService

router = APIRouter()

class LoginSchema(BaseModel):
    email: str
    password: str

def get_identity_service(
    uow: UnitOfWork = Depends(get_uow),
    codec: TokenCodec = Depends(get_token_codec),
    audit: AuditTrail = Depends(get_audit_trail),
) -> IdentityService:
    return IdentityService(uow, codec, audit)

@router.post("/login")
async def login(
    data: LoginSchema,
    response: Response,
    service: IdentityService = Depends(get_identity_service)
):
    """Login: return the access token and set it as an http-only cookie."""
    issued = await service.login(data.email, data.password)
    claims = issued.claims
    cookie_max_age = int((claims.expires_at - claims.issued_at).total_seconds())
    response.set_cookie(
        key=settings.ACCESS_TOKEN_COOKIE_NAME,
        value=issued.token,
        max_age=cookie_max_age,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE
    )

    return ResponseModel.success(
        data={
            "access_token": issued.token,
            "token_type": "bearer",
            "expires_at": claims.expires_at.isoformat(),
            "user": {
                "id": claims.user_id,
                "tenant_id": claims.tenant_id,
                "role": claims.role.value
            }
        }
    )

@router.post("/logout")
async def logout(response: Response):
    """Logout: clear token cookie. The token itself stays valid until it expires."""
    response.delete_cookie(
        key=settings.ACCESS_TOKEN_COOKIE_NAME,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE
    )
    return ResponseModel.success(data={"message": "Logged out successfully"})
