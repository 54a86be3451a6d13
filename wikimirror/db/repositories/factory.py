"""Unit of Work construction"""

from contextlib import asynccontextmanager
from functools import partial
from typing import AsyncContextManager, AsyncGenerator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .base import UnitOfWork


UnitOfWorkFactory = Callable[[], AsyncContextManager[UnitOfWork]]


@asynccontextmanager
async def get_unit_of_work(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[UnitOfWork, None]:
    """
    Get a Unit of Work on its own session.

    Commits when the block exits cleanly, rolls back on error.

    Usage:
        async with get_unit_of_work() as uow:
            entity = await uow.entities.get_by_remote_id(remote_id)
    """
    from .postgres import PostgresUnitOfWork

    if session_factory is None:
        from ..database import get_session_factory
        session_factory = get_session_factory()

    async with session_factory() as session:
        uow = PostgresUnitOfWork(session)
        try:
            yield uow
            await uow.commit()
        except Exception:
            await uow.rollback()
            raise


def unit_of_work_factory(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> UnitOfWorkFactory:
    """Bind a session factory so callers can open independent units of work"""
    return partial(get_unit_of_work, session_factory)
