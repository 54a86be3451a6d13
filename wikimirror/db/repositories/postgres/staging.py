"""PostgreSQL implementation of StagingRepository"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import StagingSnapshot
from ...entities import StagingRow
from ..base import StagingRepository
from .upsert import dialect_insert


STAGING_FIELDS = (
    "url", "title", "rating", "vote_count", "revision_count", "comment_count",
    "tags", "category", "attribution_count", "parent_url", "alternate_title",
    "is_deleted", "estimated_cost", "last_seen_at",
)


class PostgresStagingRepository(StagingRepository):
    """PostgreSQL implementation using SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self._session = session

    def _to_entity(self, model: StagingSnapshot) -> StagingRow:
        """Convert SQLAlchemy model to domain entity"""
        return StagingRow(
            remote_id=model.remote_id,
            url=model.url,
            title=model.title,
            rating=model.rating,
            vote_count=model.vote_count,
            revision_count=model.revision_count,
            comment_count=model.comment_count,
            tags=list(model.tags or []),
            category=model.category,
            attribution_count=model.attribution_count,
            parent_url=model.parent_url,
            alternate_title=model.alternate_title,
            is_deleted=model.is_deleted,
            estimated_cost=model.estimated_cost,
            last_seen_at=model.last_seen_at,
        )

    async def truncate(self) -> int:
        """Delete every staging row, return count deleted"""
        result = await self._session.execute(delete(StagingSnapshot))
        return result.rowcount or 0

    async def upsert(self, row: StagingRow) -> None:
        """Insert or replace a row by remote ID"""
        values = {name: getattr(row, name) for name in STAGING_FIELDS}
        values["tags"] = list(row.tags)
        stmt = dialect_insert(self._session, StagingSnapshot).values(remote_id=row.remote_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[StagingSnapshot.remote_id],
            set_=values,
        )
        await self._session.execute(stmt)

    async def get(self, remote_id: int) -> Optional[StagingRow]:
        """Get row by remote ID"""
        result = await self._session.execute(
            select(StagingSnapshot).where(StagingSnapshot.remote_id == remote_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_many(self, remote_ids: Sequence[int]) -> dict[int, StagingRow]:
        """Rows keyed by remote ID"""
        if not remote_ids:
            return {}
        result = await self._session.execute(
            select(StagingSnapshot).where(StagingSnapshot.remote_id.in_(list(remote_ids)))
        )
        return {m.remote_id: self._to_entity(m) for m in result.scalars().all()}

    async def list_page(self, after_remote_id: Optional[int], limit: int) -> list[StagingRow]:
        """Rows ordered by remote ID, starting after the given ID"""
        query = select(StagingSnapshot).order_by(StagingSnapshot.remote_id).limit(limit)
        if after_remote_id is not None:
            query = query.where(StagingSnapshot.remote_id > after_remote_id)
        result = await self._session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def purge_older_than(self, before: datetime) -> int:
        """Delete rows last seen before a cutoff, return count deleted"""
        result = await self._session.execute(
            delete(StagingSnapshot).where(StagingSnapshot.last_seen_at < before)
        )
        return result.rowcount or 0

    async def count(self) -> int:
        """Count staging rows"""
        result = await self._session.execute(select(func.count(StagingSnapshot.remote_id)))
        return result.scalar() or 0
