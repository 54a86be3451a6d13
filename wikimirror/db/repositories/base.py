"""Abstract repository interfaces - backend agnostic"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

from ..entities import (
    DirtyRecord,
    EntityState,
    QueueStats,
    StagingRow,
    VersionState,
)
from ...remote.records import AttributionRecord, RemoteUser, RevisionRecord, VoteRecord


BATCH_PHASE = "batch"
EXHAUSTIVE_PHASE = "exhaustive"


class EntityRepository(ABC):
    """Repository for mirrored entities"""

    @abstractmethod
    async def get(self, entity_id: int) -> Optional[EntityState]:
        """Get entity by local ID"""
        ...

    @abstractmethod
    async def get_by_remote_id(self, remote_id: int) -> Optional[EntityState]:
        """Get entity by its stable remote ID"""
        ...

    @abstractmethod
    async def get_many_by_remote_id(self, remote_ids: Sequence[int]) -> dict[int, EntityState]:
        """Get entities keyed by remote ID"""
        ...

    @abstractmethod
    async def create(self, entity: EntityState) -> int:
        """Create an entity, return its ID"""
        ...

    @abstractmethod
    async def update(self, entity: EntityState) -> None:
        """Persist url, url history and deletion state"""
        ...

    @abstractmethod
    async def list_active_by_urls(self, urls: Sequence[str]) -> list[EntityState]:
        """Non-deleted entities currently holding any of the URLs"""
        ...

    @abstractmethod
    async def list_active_absent_from_staging(self) -> list[EntityState]:
        """Non-deleted entities whose remote ID is not in the staging table"""
        ...

    @abstractmethod
    async def count(self, include_deleted: bool = True) -> int:
        """Count entities"""
        ...


class VersionRepository(ABC):
    """Repository for SCD2 entity versions"""

    @abstractmethod
    async def get(self, version_id: int) -> Optional[VersionState]:
        """Get version by ID"""
        ...

    @abstractmethod
    async def get_current(self, entity_id: int) -> Optional[VersionState]:
        """The open version of an entity, if any"""
        ...

    @abstractmethod
    async def get_current_many(self, entity_ids: Sequence[int]) -> dict[int, VersionState]:
        """Open versions keyed by entity ID"""
        ...

    @abstractmethod
    async def list_for_entity(self, entity_id: int) -> list[VersionState]:
        """All versions of an entity, oldest first"""
        ...

    @abstractmethod
    async def create(self, version: VersionState) -> int:
        """Insert a version, return its ID"""
        ...

    @abstractmethod
    async def close(self, version_id: int, at: datetime) -> bool:
        """Set valid_to on an open version; False if it was already closed"""
        ...

    @abstractmethod
    async def patch_current(self, version_id: int, **fields) -> bool:
        """Update fields on an open version; False if the version is closed"""
        ...


class UserRepository(ABC):
    """Repository for remote users"""

    @abstractmethod
    async def upsert_many(self, users: Sequence[RemoteUser]) -> int:
        """Insert or refresh users by remote ID, return count written"""
        ...


class RevisionRepository(ABC):
    """Repository for revisions, deduplicated per version and remote revision ID"""

    @abstractmethod
    async def upsert_many(self, version_id: int, records: Sequence[RevisionRecord]) -> int:
        """Insert revisions not yet present, return count inserted"""
        ...

    @abstractmethod
    async def count_for_entity(self, entity_id: int) -> int:
        """Revisions across every version of an entity"""
        ...


class VoteRepository(ABC):
    """Repository for votes, deduplicated per version, actor and timestamp"""

    @abstractmethod
    async def upsert_many(self, version_id: int, records: Sequence[VoteRecord]) -> int:
        """Insert or update votes, return count written"""
        ...

    @abstractmethod
    async def count_for_entity(self, entity_id: int) -> int:
        """Votes across every version of an entity"""
        ...


class AttributionRepository(ABC):
    """Repository for attributions, deduplicated per version, type, order and actor"""

    @abstractmethod
    async def upsert_many(self, version_id: int, records: Sequence[AttributionRecord]) -> int:
        """Insert or update attributions, return count written"""
        ...

    @abstractmethod
    async def count_for_version(self, version_id: int) -> int:
        """Attributions attached to a version"""
        ...


class StagingRepository(ABC):
    """Repository for inventory snapshot rows"""

    @abstractmethod
    async def truncate(self) -> int:
        """Delete every staging row, return count deleted"""
        ...

    @abstractmethod
    async def upsert(self, row: StagingRow) -> None:
        """Insert or replace a row by remote ID"""
        ...

    @abstractmethod
    async def get(self, remote_id: int) -> Optional[StagingRow]:
        """Get row by remote ID"""
        ...

    @abstractmethod
    async def get_many(self, remote_ids: Sequence[int]) -> dict[int, StagingRow]:
        """Rows keyed by remote ID"""
        ...

    @abstractmethod
    async def list_page(self, after_remote_id: Optional[int], limit: int) -> list[StagingRow]:
        """Rows ordered by remote ID, starting after the given ID"""
        ...

    @abstractmethod
    async def purge_older_than(self, before: datetime) -> int:
        """Delete rows last seen before a cutoff, return count deleted"""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Count staging rows"""
        ...


class DirtyQueueRepository(ABC):
    """Repository for dirty queue records"""

    @abstractmethod
    async def clear_all(self) -> int:
        """Delete every record, return count deleted"""
        ...

    @abstractmethod
    async def create_many(self, records: Sequence[DirtyRecord]) -> int:
        """Insert records, return count"""
        ...

    @abstractmethod
    async def get(self, remote_id: int) -> Optional[DirtyRecord]:
        """Get record by remote ID"""
        ...

    @abstractmethod
    async def list_pending(self, phase: str, limit: int) -> list[DirtyRecord]:
        """Records still needing the given phase, oldest first"""
        ...

    @abstractmethod
    async def clear_flag(self, remote_id: int, phase: str) -> None:
        """Mark a phase done for an entity"""
        ...

    @abstractmethod
    async def mark_exhaustive(self, remote_id: int, reasons: Sequence[str]) -> None:
        """Flag an entity for the exhaustive phase, appending reasons"""
        ...

    @abstractmethod
    async def append_reasons(self, remote_id: int, reasons: Sequence[str]) -> None:
        """Append reasons without touching flags"""
        ...

    @abstractmethod
    async def stats(self) -> QueueStats:
        """Queue counters"""
        ...


class UnitOfWork(ABC):
    """Unit of work pattern for transaction management"""

    entities: EntityRepository
    versions: VersionRepository
    users: UserRepository
    revisions: RevisionRepository
    votes: VoteRepository
    attributions: AttributionRepository
    staging: StagingRepository
    dirty_queue: DirtyQueueRepository

    @abstractmethod
    async def __aenter__(self) -> "UnitOfWork":
        ...

    @abstractmethod
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        ...

    @abstractmethod
    async def use_serializable(self) -> None:
        """Request serializable isolation for the current transaction, where supported"""
        ...

    @abstractmethod
    def record_metric(self, name: str, value: int = 1) -> None:
        """Stage a metrics counter; published on commit, dropped on rollback"""
        ...

    @abstractmethod
    async def commit(self) -> None:
        """Commit the transaction"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """Rollback the transaction"""
        ...
