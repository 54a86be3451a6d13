"""PostgreSQL implementation of VersionRepository"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import EntityVersion
from ...entities import VersionState
from ..base import VersionRepository


# Fields that may be written to an open version without opening a new one
PATCHABLE_FIELDS = frozenset({
    "alternate_title",
    "attribution_count",
    "comment_count",
    "rating",
    "vote_count",
    "revision_count",
})


class PostgresVersionRepository(VersionRepository):
    """PostgreSQL implementation using SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self._session = session

    def _to_entity(self, model: EntityVersion) -> VersionState:
        """Convert SQLAlchemy model to domain entity"""
        return VersionState(
            id=model.id,
            entity_id=model.entity_id,
            title=model.title,
            alternate_title=model.alternate_title,
            rating=model.rating,
            vote_count=model.vote_count,
            revision_count=model.revision_count,
            comment_count=model.comment_count,
            tags=list(model.tags or []),
            category=model.category,
            attribution_count=model.attribution_count,
            source=model.source,
            text_content=model.text_content,
            is_deleted=model.is_deleted,
            valid_from=model.valid_from,
            valid_to=model.valid_to,
        )

    def _to_model(self, entity: VersionState) -> EntityVersion:
        """Convert domain entity to SQLAlchemy model"""
        return EntityVersion(
            entity_id=entity.entity_id,
            title=entity.title,
            alternate_title=entity.alternate_title,
            rating=entity.rating,
            vote_count=entity.vote_count,
            revision_count=entity.revision_count,
            comment_count=entity.comment_count,
            tags=list(entity.tags),
            category=entity.category,
            attribution_count=entity.attribution_count,
            source=entity.source,
            text_content=entity.text_content,
            is_deleted=entity.is_deleted,
            valid_from=entity.valid_from,
            valid_to=entity.valid_to,
        )

    async def get(self, version_id: int) -> Optional[VersionState]:
        """Get version by ID"""
        result = await self._session.execute(
            select(EntityVersion).where(EntityVersion.id == version_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_current(self, entity_id: int) -> Optional[VersionState]:
        """The open version of an entity, if any"""
        result = await self._session.execute(
            select(EntityVersion)
            .where(EntityVersion.entity_id == entity_id)
            .where(EntityVersion.valid_to.is_(None))
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_current_many(self, entity_ids: Sequence[int]) -> dict[int, VersionState]:
        """Open versions keyed by entity ID"""
        if not entity_ids:
            return {}
        result = await self._session.execute(
            select(EntityVersion)
            .where(EntityVersion.entity_id.in_(list(entity_ids)))
            .where(EntityVersion.valid_to.is_(None))
        )
        return {m.entity_id: self._to_entity(m) for m in result.scalars().all()}

    async def list_for_entity(self, entity_id: int) -> list[VersionState]:
        """All versions of an entity, oldest first"""
        result = await self._session.execute(
            select(EntityVersion)
            .where(EntityVersion.entity_id == entity_id)
            .order_by(EntityVersion.valid_from, EntityVersion.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def create(self, version: VersionState) -> int:
        """Insert a version, return its ID"""
        model = self._to_model(version)
        self._session.add(model)
        await self._session.flush()
        return model.id

    async def close(self, version_id: int, at: datetime) -> bool:
        """Set valid_to on an open version; False if it was already closed"""
        result = await self._session.execute(
            update(EntityVersion)
            .where(EntityVersion.id == version_id)
            .where(EntityVersion.valid_to.is_(None))
            .values(valid_to=at)
        )
        return result.rowcount == 1

    async def patch_current(self, version_id: int, **fields) -> bool:
        """Update fields on an open version; False if the version is closed"""
        unknown = set(fields) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be patched in place: {sorted(unknown)}")
        if not fields:
            return False
        result = await self._session.execute(
            update(EntityVersion)
            .where(EntityVersion.id == version_id)
            .where(EntityVersion.valid_to.is_(None))
            .values(**fields)
        )
        return result.rowcount == 1
