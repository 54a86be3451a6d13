"""Shared fixtures: a throwaway SQLite store, small limits and a fake remote"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from wikimirror.context import SyncContext
from wikimirror.db.config import Settings
from wikimirror.db.database import create_engine, create_session_factory, init_db
from wikimirror.db.repositories.factory import unit_of_work_factory
from wikimirror.observability import metrics

from helpers import FakeWiki


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with limits small enough to exercise paging and chunking"""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'mirror.db'}",
        inventory_page_size=2,
        batch_limit=5,
        bucket_soft_limit=40,
        bucket_max_items=3,
        chunk_size=2,
        exhaustive_concurrency=1,
        transaction_timeout_seconds=10,
        log_json=False,
    )


@pytest_asyncio.fixture
async def engine(settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(settings.database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def uow_factory(session_factory):
    return unit_of_work_factory(session_factory)


@pytest.fixture
def wiki() -> FakeWiki:
    return FakeWiki()


@pytest.fixture
def ctx(settings, wiki, uow_factory) -> SyncContext:
    return SyncContext(settings=settings, client=wiki, uow_factory=uow_factory)
