from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from .base import BaseDatabaseDriver

class MySQLDriver(BaseDatabaseDriver):
    def __init__(self, url: str):
        self.engine = create_async_engine(url, echo=False, future=True, pool_pre_ping=True)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def connect(self):
        """Check connectivity (the engine manages the pool)."""
        async with self.engine.begin() as conn:
            await conn.execute(text("SELECT 1"))

    async def disconnect(self):
        await self.engine.dispose()

    async def create_all(self):
        """Create tables for local development; production uses Alembic migrations."""
        import apps.models  # noqa: F401  register all tables in metadata
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def get_session(self):
        async with self.session_factory() as session:
            yield session
