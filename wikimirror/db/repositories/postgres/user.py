"""PostgreSQL implementation of UserRepository"""

from __future__ import annotations

from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ...models import User
from ...entities import _utcnow
from ....remote.records import RemoteUser
from ..base import UserRepository
from .upsert import dialect_insert


def _is_placeholder(name: str) -> bool:
    return name.startswith("wd:")


class PostgresUserRepository(UserRepository):
    """PostgreSQL implementation using SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def upsert_many(self, users: Sequence[RemoteUser]) -> int:
        """
        Insert or refresh users by remote ID.

        Placeholder names never overwrite a known display name.
        """
        named: dict[int, str] = {}
        placeholders: dict[int, str] = {}
        for user in users:
            if user is None or user.remote_id is None:
                continue
            name = user.display_name or f"wd:{user.remote_id}"
            if _is_placeholder(name):
                placeholders.setdefault(user.remote_id, name)
            else:
                named[user.remote_id] = name
        for remote_id in named:
            placeholders.pop(remote_id, None)

        now = _utcnow()
        if named:
            stmt = dialect_insert(self._session, User).values([
                {"remote_id": rid, "display_name": name, "updated_at": now}
                for rid, name in sorted(named.items())
            ])
            stmt = stmt.on_conflict_do_update(
                index_elements=[User.remote_id],
                set_={"display_name": stmt.excluded.display_name, "updated_at": now},
            )
            await self._session.execute(stmt)
        if placeholders:
            stmt = dialect_insert(self._session, User).values([
                {"remote_id": rid, "display_name": name, "updated_at": now}
                for rid, name in sorted(placeholders.items())
            ])
            await self._session.execute(stmt.on_conflict_do_nothing(index_elements=[User.remote_id]))
        return len(named) + len(placeholders)
