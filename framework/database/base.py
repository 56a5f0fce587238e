from abc import ABC, abstractmethod

class BaseDatabaseDriver(ABC):
    """Relational store behind the repositories (MySQL in production, SQLite in tests)."""

    @abstractmethod
    async def connect(self):
        pass

    @abstractmethod
    async def disconnect(self):
        pass

    @abstractmethod
    async def create_all(self):
        """Create missing tables (development only)."""

    @abstractmethod
    def get_session(self):
        """Async generator yielding one session per request."""
