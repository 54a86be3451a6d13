"""PostgreSQL implementation of EntityRepository"""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import Entity, StagingSnapshot
from ...entities import EntityState, _utcnow
from ..base import EntityRepository


class PostgresEntityRepository(EntityRepository):
    """PostgreSQL implementation using SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self._session = session

    def _to_entity(self, model: Entity) -> EntityState:
        """Convert SQLAlchemy model to domain entity"""
        return EntityState(
            id=model.id,
            remote_id=model.remote_id,
            current_url=model.current_url,
            url_history=list(model.url_history or []),
            is_deleted=model.is_deleted,
            first_seen_at=model.first_seen_at,
            updated_at=model.updated_at,
        )

    async def get(self, entity_id: int) -> Optional[EntityState]:
        """Get entity by local ID"""
        result = await self._session.execute(select(Entity).where(Entity.id == entity_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_remote_id(self, remote_id: int) -> Optional[EntityState]:
        """Get entity by its stable remote ID"""
        result = await self._session.execute(select(Entity).where(Entity.remote_id == remote_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_many_by_remote_id(self, remote_ids: Sequence[int]) -> dict[int, EntityState]:
        """Get entities keyed by remote ID"""
        if not remote_ids:
            return {}
        result = await self._session.execute(
            select(Entity).where(Entity.remote_id.in_(list(remote_ids)))
        )
        return {m.remote_id: self._to_entity(m) for m in result.scalars().all()}

    async def create(self, entity: EntityState) -> int:
        """Create an entity, return its ID"""
        model = Entity(
            remote_id=entity.remote_id,
            current_url=entity.current_url,
            url_history=list(entity.url_history),
            is_deleted=entity.is_deleted,
            first_seen_at=entity.first_seen_at,
            updated_at=entity.updated_at,
        )
        self._session.add(model)
        await self._session.flush()
        return model.id

    async def update(self, entity: EntityState) -> None:
        """Persist url, url history and deletion state"""
        await self._session.execute(
            update(Entity)
            .where(Entity.id == entity.id)
            .values(
                current_url=entity.current_url,
                url_history=list(entity.url_history),
                is_deleted=entity.is_deleted,
                updated_at=_utcnow(),
            )
        )

    async def list_active_by_urls(self, urls: Sequence[str]) -> list[EntityState]:
        """Non-deleted entities currently holding any of the URLs"""
        if not urls:
            return []
        result = await self._session.execute(
            select(Entity)
            .where(Entity.current_url.in_(list(urls)))
            .where(Entity.is_deleted.is_(False))
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_active_absent_from_staging(self) -> list[EntityState]:
        """Non-deleted entities whose remote ID is not in the staging table"""
        staged = select(StagingSnapshot.remote_id).where(StagingSnapshot.remote_id == Entity.remote_id)
        result = await self._session.execute(
            select(Entity)
            .where(Entity.is_deleted.is_(False))
            .where(~staged.exists())
            .order_by(Entity.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count(self, include_deleted: bool = True) -> int:
        """Count entities"""
        query = select(func.count(Entity.id))
        if not include_deleted:
            query = query.where(Entity.is_deleted.is_(False))
        result = await self._session.execute(query)
        return result.scalar() or 0
