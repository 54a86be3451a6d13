"""Dialect-aware INSERT ... ON CONFLICT construction"""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(session: AsyncSession, model):
    """Return an insert() for the session's dialect that supports on_conflict_*"""
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(model)
    if name == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"ON CONFLICT upserts are not supported on {name}")


# Rows per multi-VALUES statement, keeps SQLite under its bound parameter limit
ROWS_PER_STATEMENT = 100


def chunked(rows: list, size: int = ROWS_PER_STATEMENT):
    for i in range(0, len(rows), size):
        yield rows[i:i + size]
