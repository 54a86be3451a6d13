"""PostgreSQL Unit of Work implementation"""

from collections import Counter

from sqlalchemy.ext.asyncio import AsyncSession

from ....observability import metrics
from ..base import UnitOfWork
from .attribution import PostgresAttributionRepository
from .dirty_queue import PostgresDirtyQueueRepository
from .entity import PostgresEntityRepository
from .revision import PostgresRevisionRepository
from .staging import PostgresStagingRepository
from .user import PostgresUserRepository
from .version import PostgresVersionRepository
from .vote import PostgresVoteRepository


class PostgresUnitOfWork(UnitOfWork):
    """PostgreSQL implementation of Unit of Work pattern"""

    def __init__(self, session: AsyncSession):
        self._session = session
        self.entities = PostgresEntityRepository(session)
        self.versions = PostgresVersionRepository(session)
        self.users = PostgresUserRepository(session)
        self.revisions = PostgresRevisionRepository(session)
        self.votes = PostgresVoteRepository(session)
        self.attributions = PostgresAttributionRepository(session)
        self.staging = PostgresStagingRepository(session)
        self.dirty_queue = PostgresDirtyQueueRepository(session)
        self._counts: Counter[str] = Counter()

    async def __aenter__(self) -> "PostgresUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            await self.rollback()
        # Note: commit is NOT automatic - caller must explicitly commit

    async def use_serializable(self) -> None:
        """Request SERIALIZABLE isolation; must run before the first statement"""
        if self._session.get_bind().dialect.name == "postgresql":
            await self._session.connection(
                execution_options={"isolation_level": "SERIALIZABLE"}
            )

    def record_metric(self, name: str, value: int = 1) -> None:
        """Stage a metrics counter; published on commit, dropped on rollback"""
        self._counts[name] += value

    async def commit(self) -> None:
        """Commit the transaction"""
        await self._session.commit()
        for name, value in self._counts.items():
            metrics.increment(name, value)
        self._counts.clear()

    async def rollback(self) -> None:
        """Rollback the transaction"""
        await self._session.rollback()
        self._counts.clear()
