"""SQLAlchemy models for the mirrored collection"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntId = BigInteger().with_variant(Integer, "sqlite")
JSONList = JSON().with_variant(JSONB, "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


class Entity(Base):
    """A remotely identified document, keyed by its stable remote id"""
    __tablename__ = "entities"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    remote_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    current_url: Mapped[str] = mapped_column(Text, nullable=False)
    url_history: Mapped[list] = mapped_column(JSONList, nullable=False, default=list)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    # Relationships
    versions: Mapped[list["EntityVersion"]] = relationship(
        "EntityVersion", back_populates="entity", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_entities_current_url", current_url),
        Index("idx_entities_is_deleted", is_deleted),
    )


class EntityVersion(Base):
    """SCD2 snapshot of an entity valid over [valid_from, valid_to)"""
    __tablename__ = "entity_versions"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    entity_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("entities.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    alternate_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    vote_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    revision_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    comment_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tags: Mapped[list] = mapped_column(JSONList, nullable=False, default=list)
    category: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attribution_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    text_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    valid_from: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    valid_to: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    entity: Mapped["Entity"] = relationship("Entity", back_populates="versions")

    __table_args__ = (
        Index("idx_entity_versions_entity_id", entity_id, valid_to),
        # At most one open version per entity
        Index(
            "uq_entity_versions_current",
            entity_id,
            unique=True,
            postgresql_where=valid_to.is_(None),
            sqlite_where=valid_to.is_(None),
        ),
    )


class User(Base):
    """Remote user referenced by revisions, votes or attributions"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    remote_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Revision(Base):
    """Revision attributed to one entity version"""
    __tablename__ = "revisions"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    entity_version_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("entity_versions.id", ondelete="CASCADE"), nullable=False
    )
    remote_revision_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False, default="unknown")
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        UniqueConstraint("entity_version_id", "remote_revision_id", name="uq_revisions_version_remote"),
        Index("idx_revisions_timestamp", timestamp),
    )


class Vote(Base):
    """Vote attributed to one entity version, cast by a user or an anonymous actor"""
    __tablename__ = "votes"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    entity_version_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("entity_versions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    anon_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    direction: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NOT NULL AND anon_key IS NULL) OR (user_id IS NULL AND anon_key IS NOT NULL)",
            name="check_vote_actor",
        ),
        UniqueConstraint("entity_version_id", "user_id", "timestamp", name="uq_votes_version_user_ts"),
        UniqueConstraint("entity_version_id", "anon_key", "timestamp", name="uq_votes_version_anon_ts"),
        Index("idx_votes_user_id", user_id),
    )


class Attribution(Base):
    """Authorship credit attached to one entity version"""
    __tablename__ = "attributions"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    entity_version_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("entity_versions.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(Text, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    anon_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "entity_version_id", "type", "order_index", "user_id", name="uq_attributions_version_user"
        ),
        UniqueConstraint(
            "entity_version_id", "type", "order_index", "anon_key", name="uq_attributions_version_anon"
        ),
    )


class StagingSnapshot(Base):
    """Lightweight inventory row, replaced on every scan"""
    __tablename__ = "staging_snapshots"

    remote_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    vote_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    revision_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    comment_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tags: Mapped[list] = mapped_column(JSONList, nullable=False, default=list)
    category: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attribution_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parent_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    alternate_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    estimated_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_staging_snapshots_url", url),
        Index("idx_staging_snapshots_last_seen_at", last_seen_at),
    )


class DirtyQueueRecord(Base):
    """Per-entity pending work produced by the snapshot diff"""
    __tablename__ = "dirty_queue"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    remote_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    entity_id: Mapped[Optional[int]] = mapped_column(BigIntId, nullable=True)
    staging_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    need_batch_fetch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    need_exhaustive_fetch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    done_batch_fetch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    done_exhaustive_fetch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reasons: Mapped[list] = mapped_column(JSONList, nullable=False, default=list)
    detected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_dirty_queue_batch", need_batch_fetch),
        Index("idx_dirty_queue_exhaustive", need_exhaustive_fetch),
    )
