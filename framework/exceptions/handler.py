from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from framework.logging.logger import get_logger
from framework.response import ResponseModel
from typing import Any, Optional
from framework.config import settings

logger = get_logger("exception_handler")

class BusinessException(Exception):
    """Base class for business exceptions."""
    def __init__(self, message: str, status_code: int = 200, code: int = 400, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.detail = detail


class InvalidCredentials(BusinessException):
    """Login failed. Unknown email and wrong password are reported identically."""
    def __init__(self):
        super().__init__("Invalid email or password", status_code=401, code=401)


class Unauthenticated(BusinessException):
    """Token missing, malformed, expired or stale.

    `reason` is for internal logs only; clients always see the same message.
    """
    def __init__(self, reason: str = "unauthenticated"):
        super().__init__("Could not validate credentials", status_code=401, code=401)
        self.reason = reason


class Forbidden(BusinessException):
    def __init__(self, message: str = "Operation not permitted"):
        super().__init__(message, status_code=403, code=403)


class QuotaExceeded(BusinessException):
    """Creation rejected because the tenant reached its subscription limit."""
    def __init__(self, resource: str, current: int, limit: int):
        super().__init__(
            f"Quota exceeded for {resource}: {current}/{limit}",
            status_code=403,
            code=4031,
            detail={"resource": resource, "current": current, "limit": limit},
        )
        self.resource = resource
        self.current = current
        self.limit = limit


def _auth_headers(exc: BusinessException) -> Optional[dict]:
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        return {"WWW-Authenticate": "Bearer"}
    return None


def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    trace_id = getattr(request.state, "trace_id", "unknown")

    if isinstance(exc, BusinessException):
        if isinstance(exc, Unauthenticated):
            logger.warning(f"Trace[{trace_id}] - Unauthenticated: {exc.reason}")
        else:
            logger.warning(f"Trace[{trace_id}] - BusinessError: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=ResponseModel.fail(code=exc.code, message=exc.message, data=exc.detail),
            headers=_auth_headers(exc)
        )

    if isinstance(exc, RequestValidationError):
        logger.error(f"Trace[{trace_id}] - ValidationError: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ResponseModel.fail(code=422, message="Invalid request parameters", data=_jsonable_errors(exc))
        )

    if isinstance(exc, SQLAlchemyError):
        logger.critical(f"Trace[{trace_id}] - DatabaseError: {str(exc)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ResponseModel.fail(code=500, message="Service temporarily unavailable")
        )

    logger.opt(exception=True).error(f"Trace[{trace_id}] - UncaughtException: {str(exc)}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ResponseModel.fail(
            code=500,
            message="System busy, please try again later",
            data={"trace_id": trace_id} if settings.DEBUG else None
        )
    )


def _jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception instances that JSONResponse cannot render
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]
