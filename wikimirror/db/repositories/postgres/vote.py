"""PostgreSQL implementation of VoteRepository"""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import EntityVersion, Vote
from ....remote.records import VoteRecord
from ..base import VoteRepository
from .upsert import chunked, dialect_insert


class PostgresVoteRepository(VoteRepository):
    """PostgreSQL implementation using SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def upsert_many(self, version_id: int, records: Sequence[VoteRecord]) -> int:
        """
        Insert or update votes for a version.

        Votes by known users conflict on (version, user_id, timestamp), anonymous
        votes on (version, anon_key, timestamp). A later duplicate in the same
        batch wins.
        """
        by_user = {}
        by_anon = {}
        for record in records:
            row = {
                "entity_version_id": version_id,
                "user_id": record.user_id,
                "anon_key": None if record.user_id is not None else record.anon_key,
                "direction": record.direction,
                "timestamp": record.timestamp,
            }
            if record.user_id is not None:
                by_user[(record.user_id, record.timestamp)] = row
            elif record.anon_key:
                by_anon[(record.anon_key, record.timestamp)] = row

        written = 0
        written += await self._write(list(by_user.values()), Vote.user_id)
        written += await self._write(list(by_anon.values()), Vote.anon_key)
        return written

    async def _write(self, rows: list[dict], actor_column) -> int:
        written = 0
        for chunk in chunked(rows):
            stmt = dialect_insert(self._session, Vote).values(chunk)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Vote.entity_version_id, actor_column, Vote.timestamp],
                set_={"direction": stmt.excluded.direction},
            )
            await self._session.execute(stmt)
            written += len(chunk)
        return written

    async def count_for_entity(self, entity_id: int) -> int:
        """Votes across every version of an entity"""
        result = await self._session.execute(
            select(func.count(Vote.id))
            .join(EntityVersion, EntityVersion.id == Vote.entity_version_id)
            .where(EntityVersion.entity_id == entity_id)
        )
        return result.scalar() or 0
