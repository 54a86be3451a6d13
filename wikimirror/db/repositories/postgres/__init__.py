"""PostgreSQL repository implementations"""

from .entity import PostgresEntityRepository
from .version import PostgresVersionRepository
from .user import PostgresUserRepository
from .revision import PostgresRevisionRepository
from .vote import PostgresVoteRepository
from .attribution import PostgresAttributionRepository
from .staging import PostgresStagingRepository
from .dirty_queue import PostgresDirtyQueueRepository
from .unit_of_work import PostgresUnitOfWork

__all__ = [
    "PostgresEntityRepository",
    "PostgresVersionRepository",
    "PostgresUserRepository",
    "PostgresRevisionRepository",
    "PostgresVoteRepository",
    "PostgresAttributionRepository",
    "PostgresStagingRepository",
    "PostgresDirtyQueueRepository",
    "PostgresUnitOfWork",
]
