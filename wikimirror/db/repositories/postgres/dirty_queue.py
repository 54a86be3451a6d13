"""PostgreSQL implementation of DirtyQueueRepository"""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import DirtyQueueRecord
from ...entities import DirtyRecord, QueueStats, _utcnow
from ..base import BATCH_PHASE, EXHAUSTIVE_PHASE, DirtyQueueRepository


def _phase_columns(phase: str):
    if phase == BATCH_PHASE:
        return DirtyQueueRecord.need_batch_fetch, DirtyQueueRecord.done_batch_fetch
    if phase == EXHAUSTIVE_PHASE:
        return DirtyQueueRecord.need_exhaustive_fetch, DirtyQueueRecord.done_exhaustive_fetch
    raise ValueError(f"Unknown phase: {phase}")


class PostgresDirtyQueueRepository(DirtyQueueRepository):
    """PostgreSQL implementation using SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self._session = session

    def _to_entity(self, model: DirtyQueueRecord) -> DirtyRecord:
        """Convert SQLAlchemy model to domain entity"""
        return DirtyRecord(
            id=model.id,
            remote_id=model.remote_id,
            entity_id=model.entity_id,
            staging_url=model.staging_url,
            need_batch_fetch=model.need_batch_fetch,
            need_exhaustive_fetch=model.need_exhaustive_fetch,
            done_batch_fetch=model.done_batch_fetch,
            done_exhaustive_fetch=model.done_exhaustive_fetch,
            reasons=list(model.reasons or []),
            detected_at=model.detected_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: DirtyRecord) -> DirtyQueueRecord:
        """Convert domain entity to SQLAlchemy model"""
        return DirtyQueueRecord(
            remote_id=entity.remote_id,
            entity_id=entity.entity_id,
            staging_url=entity.staging_url,
            need_batch_fetch=entity.need_batch_fetch,
            need_exhaustive_fetch=entity.need_exhaustive_fetch,
            done_batch_fetch=entity.done_batch_fetch,
            done_exhaustive_fetch=entity.done_exhaustive_fetch,
            reasons=list(entity.reasons),
            detected_at=entity.detected_at,
            updated_at=entity.updated_at,
        )

    async def _get_model(self, remote_id: int) -> Optional[DirtyQueueRecord]:
        result = await self._session.execute(
            select(DirtyQueueRecord).where(DirtyQueueRecord.remote_id == remote_id)
        )
        return result.scalar_one_or_none()

    async def clear_all(self) -> int:
        """Delete every record, return count deleted"""
        result = await self._session.execute(delete(DirtyQueueRecord))
        return result.rowcount or 0

    async def create_many(self, records: Sequence[DirtyRecord]) -> int:
        """Insert records, return count"""
        models = [self._to_model(r) for r in records]
        self._session.add_all(models)
        await self._session.flush()
        return len(models)

    async def get(self, remote_id: int) -> Optional[DirtyRecord]:
        """Get record by remote ID"""
        model = await self._get_model(remote_id)
        return self._to_entity(model) if model else None

    async def list_pending(self, phase: str, limit: int) -> list[DirtyRecord]:
        """Records still needing the given phase, oldest first"""
        need, _ = _phase_columns(phase)
        result = await self._session.execute(
            select(DirtyQueueRecord)
            .where(need.is_(True))
            .order_by(DirtyQueueRecord.detected_at, DirtyQueueRecord.id)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def clear_flag(self, remote_id: int, phase: str) -> None:
        """Mark a phase done for an entity"""
        need, done = _phase_columns(phase)
        await self._session.execute(
            update(DirtyQueueRecord)
            .where(DirtyQueueRecord.remote_id == remote_id)
            .values({need: False, done: True, DirtyQueueRecord.updated_at: _utcnow()})
        )

    async def mark_exhaustive(self, remote_id: int, reasons: Sequence[str]) -> None:
        """Flag an entity for the exhaustive phase, appending reasons"""
        model = await self._get_model(remote_id)
        if model is None:
            self._session.add(DirtyQueueRecord(
                remote_id=remote_id,
                need_exhaustive_fetch=True,
                reasons=list(reasons),
            ))
            await self._session.flush()
            return
        model.need_exhaustive_fetch = True
        model.done_exhaustive_fetch = False
        model.reasons = list(model.reasons or []) + [r for r in reasons if r not in (model.reasons or [])]
        model.updated_at = _utcnow()
        await self._session.flush()

    async def append_reasons(self, remote_id: int, reasons: Sequence[str]) -> None:
        """Append reasons without touching flags"""
        model = await self._get_model(remote_id)
        if model is None:
            return
        model.reasons = list(model.reasons or []) + list(reasons)
        model.updated_at = _utcnow()
        await self._session.flush()

    async def stats(self) -> QueueStats:
        """Queue counters"""
        total = (await self._session.execute(select(func.count(DirtyQueueRecord.id)))).scalar() or 0
        batch = (await self._session.execute(
            select(func.count(DirtyQueueRecord.id)).where(DirtyQueueRecord.need_batch_fetch.is_(True))
        )).scalar() or 0
        exhaustive = (await self._session.execute(
            select(func.count(DirtyQueueRecord.id)).where(DirtyQueueRecord.need_exhaustive_fetch.is_(True))
        )).scalar() or 0
        # JSON containment operators are dialect specific
        rows = await self._session.execute(select(DirtyQueueRecord.reasons))
        deleted = sum(1 for (reasons,) in rows if reasons and "entity_deleted" in reasons)
        return QueueStats(total=total, batch_pending=batch, exhaustive_pending=exhaustive, deleted=deleted)
