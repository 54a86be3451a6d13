"""Repository pattern for database abstraction"""

from .base import (
    BATCH_PHASE,
    EXHAUSTIVE_PHASE,
    EntityRepository,
    VersionRepository,
    UserRepository,
    RevisionRepository,
    VoteRepository,
    AttributionRepository,
    StagingRepository,
    DirtyQueueRepository,
    UnitOfWork,
)

__all__ = [
    "BATCH_PHASE",
    "EXHAUSTIVE_PHASE",
    "EntityRepository",
    "VersionRepository",
    "UserRepository",
    "RevisionRepository",
    "VoteRepository",
    "AttributionRepository",
    "StagingRepository",
    "DirtyQueueRepository",
    "UnitOfWork",
]
