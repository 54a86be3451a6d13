"""Domain entities - backend-agnostic data models"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    """Return current UTC time as naive datetime (for DB compatibility)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class EntityState:
    """Locally mirrored entity"""
    id: Optional[int] = None
    remote_id: int = 0
    current_url: str = ""
    url_history: list[str] = field(default_factory=list)
    is_deleted: bool = False
    first_seen_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class VersionState:
    """One SCD2 version of an entity"""
    id: Optional[int] = None
    entity_id: Optional[int] = None
    title: Optional[str] = None
    alternate_title: Optional[str] = None
    rating: Optional[float] = None
    vote_count: Optional[int] = None
    revision_count: Optional[int] = None
    comment_count: Optional[int] = None
    tags: list[str] = field(default_factory=list)
    category: Optional[str] = None
    attribution_count: int = 0
    source: Optional[str] = None
    text_content: Optional[str] = None
    is_deleted: bool = False
    valid_from: datetime = field(default_factory=_utcnow)
    valid_to: Optional[datetime] = None

    @property
    def is_current(self) -> bool:
        return self.valid_to is None


@dataclass
class StagingRow:
    """Inventory snapshot of one remote entity"""
    remote_id: int = 0
    url: str = ""
    title: Optional[str] = None
    rating: Optional[float] = None
    vote_count: Optional[int] = None
    revision_count: Optional[int] = None
    comment_count: Optional[int] = None
    tags: list[str] = field(default_factory=list)
    category: Optional[str] = None
    attribution_count: int = 0
    parent_url: Optional[str] = None
    alternate_title: Optional[str] = None
    is_deleted: bool = False
    estimated_cost: float = 0
    last_seen_at: datetime = field(default_factory=_utcnow)


@dataclass
class DirtyRecord:
    """Pending work for one entity"""
    id: Optional[int] = None
    remote_id: int = 0
    entity_id: Optional[int] = None
    staging_url: Optional[str] = None
    need_batch_fetch: bool = False
    need_exhaustive_fetch: bool = False
    done_batch_fetch: bool = False
    done_exhaustive_fetch: bool = False
    reasons: list[str] = field(default_factory=list)
    detected_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class QueueStats:
    """Dirty queue counters"""
    total: int = 0
    batch_pending: int = 0
    exhaustive_pending: int = 0
    deleted: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "batch_pending": self.batch_pending,
            "exhaustive_pending": self.exhaustive_pending,
            "deleted": self.deleted,
        }
