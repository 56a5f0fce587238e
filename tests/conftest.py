"""Test config and shared fixtures."""
import os

# Cheap bcrypt for tests; must be set before settings are loaded
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("APP_ENV", "testing")

import pytest
from dataclasses import dataclass
from typing import AsyncGenerator
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, func, select
from sqlmodel.ext.asyncio.session import AsyncSession

import apps.models  # noqa: F401  register all tables in metadata
from main import app
from framework.logging.audit import AuditTrail, MemorySink
from framework.repository.unit_of_work import UnitOfWork
from framework.security import Role, get_password_hash, get_token_codec
from apps.identity.gateway import get_audit_trail, get_db, get_session_factory
from apps.identity.models import ResourceKind, SubscriptionTier, Tenant, User
from apps.identity.quota import QuotaEnforcer
from apps.identity.repository import TenantUsageRepository


# In-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PASSWORD = "password123"


@dataclass
class World:
    """Seeded tenants and users."""
    demo: Tenant
    acme: Tenant
    super_admin: User
    demo_admin: User
    alice: User
    bob: User
    acme_admin: User
    carol: User


@pytest.fixture(scope="function")
async def engine():
    # One shared connection: every session sees the others' commits.
    # No reset on return, so closing one session never rolls back another's work.
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        pool_reset_on_return=None,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit_sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def audit(audit_sink: MemorySink) -> AuditTrail:
    return AuditTrail(audit_sink)


@pytest.fixture
def quota(session_factory, audit) -> QuotaEnforcer:
    return QuotaEnforcer(session_factory, audit)


@pytest.fixture
def codec():
    return get_token_codec()


@pytest.fixture
async def world(session_factory) -> World:
    """Two tenants with an admin and standard users each, plus the Super Admin."""
    hashed = get_password_hash(PASSWORD)
    async with session_factory() as session:
        demo = Tenant(name="demo", subscription_tier=SubscriptionTier.PROFESSIONAL, max_users=5, max_projects=5)
        acme = Tenant(name="acme", subscription_tier=SubscriptionTier.FREE, max_users=5, max_projects=3)
        session.add(demo)
        session.add(acme)
        await session.flush()

        def member(email, tenant, role):
            user = User(email=email, hashed_password=hashed, tenant_id=tenant.id if tenant else None, role=role)
            session.add(user)
            return user

        world = World(
            demo=demo,
            acme=acme,
            super_admin=member("root@platform.io", None, Role.SUPER_ADMIN),
            demo_admin=member("admin@demo.io", demo, Role.TENANT_ADMIN),
            alice=member("alice@demo.io", demo, Role.STANDARD_USER),
            bob=member("bob@demo.io", demo, Role.STANDARD_USER),
            acme_admin=member("admin@acme.io", acme, Role.TENANT_ADMIN),
            carol=member("carol@acme.io", acme, Role.STANDARD_USER),
        )
        await session.flush()

        usage_repo = TenantUsageRepository(session)
        await usage_repo.set_used(demo.id, ResourceKind.USER, 3)
        await usage_repo.set_used(demo.id, ResourceKind.PROJECT, 0)
        await usage_repo.set_used(acme.id, ResourceKind.USER, 2)
        await usage_repo.set_used(acme.id, ResourceKind.PROJECT, 0)
        await session.commit()
    return world


@pytest.fixture
def auth(codec):
    """auth(user) -> Authorization header carrying a fresh token for that user."""
    def _auth(user: User) -> dict:
        token = codec.issue(user.id, user.tenant_id, user.role).token
        return {"Authorization": f"Bearer {token}"}
    return _auth


@pytest.fixture
def used(quota):
    """used(tenant_id, kind) -> current counter value."""
    async def _used(tenant_id: int, kind: ResourceKind) -> int:
        report = await quota.usage(tenant_id)
        return report[kind.value]["used"]
    return _used


@pytest.fixture
def count_rows(session_factory):
    """count_rows(model, tenant_id) -> rows of that model stored for the tenant."""
    async def _count(model, tenant_id: int) -> int:
        async with session_factory() as session:
            async with UnitOfWork(session):
                result = await session.exec(select(func.count(model.id)).where(model.tenant_id == tenant_id))
                return result.one()
    return _count


@pytest.fixture
async def client(session_factory, audit) -> AsyncGenerator[AsyncClient, None]:
    """Create test client."""
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_audit_trail] = lambda: audit

    # Use ASGITransport to test FastAPI app
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
