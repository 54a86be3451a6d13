"""PostgreSQL implementation of AttributionRepository"""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import Attribution
from ....remote.records import AttributionRecord
from ..base import AttributionRepository
from .upsert import chunked, dialect_insert


class PostgresAttributionRepository(AttributionRepository):
    """PostgreSQL implementation using SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def upsert_many(self, version_id: int, records: Sequence[AttributionRecord]) -> int:
        """Insert or update attributions, keyed by (type, order, actor) within the version"""
        by_user = {}
        by_anon = {}
        for record in records:
            row = {
                "entity_version_id": version_id,
                "type": record.type,
                "order_index": record.order,
                "user_id": record.user_id,
                "anon_key": None if record.user_id is not None else record.anon_key,
                "date": record.date,
            }
            if record.user_id is not None:
                by_user[(record.type, record.order, record.user_id)] = row
            elif record.anon_key:
                by_anon[(record.type, record.order, record.anon_key)] = row

        written = 0
        for rows, actor_column in ((by_user, Attribution.user_id), (by_anon, Attribution.anon_key)):
            for chunk in chunked(list(rows.values())):
                stmt = dialect_insert(self._session, Attribution).values(chunk)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[
                        Attribution.entity_version_id,
                        Attribution.type,
                        Attribution.order_index,
                        actor_column,
                    ],
                    set_={"date": stmt.excluded.date},
                )
                await self._session.execute(stmt)
                written += len(chunk)
        return written

    async def count_for_version(self, version_id: int) -> int:
        """Attributions attached to a version"""
        result = await self._session.execute(
            select(func.count(Attribution.id)).where(Attribution.entity_version_id == version_id)
        )
        return result.scalar() or 0
