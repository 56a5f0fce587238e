from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from framework.config import settings
from framework.database.manager import DatabaseManager
from framework.logging.audit import audit_trail
from framework.middleware.logging_md import LoggingMiddleware
from framework.logging.logger import LogConfig, get_logger
from framework.exceptions.handler import BusinessException, global_exception_handler
from framework.repository.unit_of_work import UnitOfWork
from framework.security import get_token_codec
from apps.identity.api.router import router as identity_router
from apps.identity.service import IdentityService
from apps.tenants.api.router import router as tenant_router
from apps.projects.api.router import router as project_router

logger = get_logger("main")


async def bootstrap_super_admin():
    """Ensure the configured Super Admin exists (no-op when not configured)."""
    if not (settings.SUPER_ADMIN_EMAIL and settings.SUPER_ADMIN_PASSWORD):
        return
    manager = DatabaseManager.get_instance()
    async with manager.mysql.session_factory() as session:
        service = IdentityService(UnitOfWork(session), get_token_codec(), audit_trail)
        await service.ensure_super_admin(settings.SUPER_ADMIN_EMAIL, settings.SUPER_ADMIN_PASSWORD)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await bootstrap_super_admin()
    yield
    if DatabaseManager._instance is not None:
        await DatabaseManager.get_instance().mysql.disconnect()


app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

# Initialize logging configuration
LogConfig.setup_logging()

# Register global exception handlers
app.add_exception_handler(BusinessException, global_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(LoggingMiddleware)

app.include_router(
    identity_router,
    prefix=settings.API_V1_AUTH_PREFIX,
    tags=["Auth"]
)

app.include_router(
    tenant_router,
    prefix=settings.API_V1_TENANTS_PREFIX,
    tags=["Tenants & Users"]
)

app.include_router(
    project_router,
    prefix=settings.API_V1_TENANTS_PREFIX,
    tags=["Projects & Tasks"]
)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
