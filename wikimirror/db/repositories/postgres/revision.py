"""PostgreSQL implementation of RevisionRepository"""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import EntityVersion, Revision
from ....remote.records import RevisionRecord
from ..base import RevisionRepository
from .upsert import chunked, dialect_insert


class PostgresRevisionRepository(RevisionRepository):
    """PostgreSQL implementation using SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def upsert_many(self, version_id: int, records: Sequence[RevisionRecord]) -> int:
        """Insert revisions not yet present for the version, return count inserted"""
        rows = {}
        for record in records:
            rows[record.remote_revision_id] = {
                "entity_version_id": version_id,
                "remote_revision_id": record.remote_revision_id,
                "timestamp": record.timestamp,
                "type": record.type,
                "comment": record.comment,
                "user_id": record.user.remote_id if record.user else None,
            }

        written = 0
        for chunk in chunked(list(rows.values())):
            stmt = dialect_insert(self._session, Revision).values(chunk)
            stmt = stmt.on_conflict_do_nothing(
                index_elements=[Revision.entity_version_id, Revision.remote_revision_id]
            )
            result = await self._session.execute(stmt)
            written += result.rowcount if result.rowcount >= 0 else len(chunk)
        return written

    async def count_for_entity(self, entity_id: int) -> int:
        """Revisions across every version of an entity"""
        result = await self._session.execute(
            select(func.count(Revision.id))
            .join(EntityVersion, EntityVersion.id == Revision.entity_version_id)
            .where(EntityVersion.entity_id == entity_id)
        )
        return result.scalar() or 0
