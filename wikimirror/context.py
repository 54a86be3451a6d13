"""Per-run state shared by the sync phases"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from .db.config import Settings
from .db.repositories.factory import UnitOfWorkFactory, unit_of_work_factory
from .remote.backoff import BackoffController
from .remote.client import RemoteClient


class QueryClient(Protocol):
    async def request(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        ...


@dataclass
class SyncContext:
    """Explicit dependencies of one sync run"""
    settings: Settings
    client: QueryClient
    uow_factory: UnitOfWorkFactory

    @classmethod
    def from_settings(cls, settings: Settings, session_factory=None) -> "SyncContext":
        """Build a context with a live remote client and the configured database"""
        backoff = BackoffController(
            max_attempts=settings.max_retry_attempts,
            default_wait=settings.rate_limit_default_wait,
        )
        client = RemoteClient(
            settings.remote_endpoint,
            timeout=settings.remote_timeout_seconds,
            backoff=backoff,
        )
        return cls(settings=settings, client=client, uow_factory=unit_of_work_factory(session_factory))

    async def aclose(self) -> None:
        close = getattr(self.client, "aclose", None)
        if close is not None:
            await close()
