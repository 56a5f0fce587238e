"""
Unit of Work: manages repositories and transaction boundaries.
"""

from typing import Optional
from sqlmodel.ext.asyncio.session import AsyncSession


class UnitOfWork:
    """Manages related repositories with a shared session and transaction commit/rollback."""

    def __init__(self, session: Optional[AsyncSession] = None):
        if session is None:
            raise ValueError("Session must be provided. Use UnitOfWork.from_session() or pass session explicitly.")

        self.session = session
        self._repositories = {}

    @classmethod
    async def from_session(cls, session: AsyncSession) -> "UnitOfWork":
        return cls(session=session)

    def get_repository(self, repo_class, guarded=None):
        """Get or create a repository instance (cached per class and guarded context).

        Tenant-scoped repositories need the GuardedContext issued by the gateway.
        """
        cache_key = (repo_class.__name__, id(guarded))
        if cache_key not in self._repositories:
            if guarded is None:
                self._repositories[cache_key] = repo_class(self.session)
            else:
                self._repositories[cache_key] = repo_class(self.session, guarded)
        return self._repositories[cache_key]

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def flush(self) -> None:
        """Flush session (e.g. to get auto-increment IDs)."""
        await self.session.flush()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            await self.rollback()
        else:
            await self.commit()
