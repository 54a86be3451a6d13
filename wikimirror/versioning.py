"""Versioned entity store - SCD2 rules for entities and their child records

Every entity has at most one open version (valid_to is NULL). A new version is
opened only when a content attribute changes; statistics and snapshot-only
fields are written to the open version in place. Closed versions are never
reopened or modified.

Child records (attributions, revisions, votes) attach to a version, not to the
entity. The target version is re-read immediately before each child write so
records always land on whichever version is current at that moment.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from .db.entities import EntityState, VersionState, _utcnow
from .db.repositories.base import UnitOfWork
from .errors import SyncError
from .observability import get_logger
from .remote.records import (
    AttributionRecord,
    PageContent,
    RemoteUser,
    RevisionRecord,
    ScannedPage,
    VoteRecord,
)


logger = get_logger("versioning")

DEFAULT_CATEGORY = "_default"


def normalize_category(category: Optional[str]) -> str:
    """A missing category is the default category"""
    return category or DEFAULT_CATEGORY


def same_tags(a: Optional[Iterable[str]], b: Optional[Iterable[str]]) -> bool:
    """Set-membership equality"""
    return set(a or ()) == set(b or ())


def should_create_new_version(current: Optional[VersionState], incoming: VersionState) -> bool:
    """
    Decide whether incoming attributes close the current version.

    A new version is opened when there is no current version, or when the
    title, category, tag set or deletion state differ. Source and text content
    are compared only when the incoming snapshot carries them (None means the
    field was not fetched). Rating, vote/revision/comment counts, alternate
    title and attribution count never open a version on their own.

    Args:
        current: Open version, or None
        incoming: Attributes just received from the remote

    Returns:
        True when a new version must be opened
    """
    if current is None:
        return True
    if current.is_deleted != incoming.is_deleted:
        return True
    if current.title != incoming.title:
        return True
    if normalize_category(current.category) != normalize_category(incoming.category):
        return True
    if not same_tags(current.tags, incoming.tags):
        return True
    if incoming.source is not None and current.source != incoming.source:
        return True
    if incoming.text_content is not None and current.text_content != incoming.text_content:
        return True
    return False


def version_from_content(content: PageContent, current: Optional[VersionState]) -> VersionState:
    """Build the incoming version, carrying forward fields the remote did not send"""
    attribution_count = (
        len(content.attributions)
        if content.attributions is not None
        else (current.attribution_count if current else 0)
    )
    return VersionState(
        title=content.title,
        alternate_title=content.alternate_title,
        rating=content.rating,
        vote_count=content.vote_count,
        revision_count=content.revision_count,
        comment_count=content.comment_count,
        tags=list(content.tags),
        category=content.category,
        attribution_count=attribution_count,
        source=content.source if content.source is not None else (current.source if current else None),
        text_content=(
            content.text_content
            if content.text_content is not None
            else (current.text_content if current else None)
        ),
        is_deleted=content.is_deleted,
    )


@dataclass
class UpsertOutcome:
    """What one content upsert changed"""
    entity_id: int
    version_id: int
    created_entity: bool = False
    opened_version: bool = False
    attributions_written: int = 0
    revisions_written: int = 0
    votes_written: int = 0


# ============ Entity identity ============

async def ensure_entity(uow: UnitOfWork, remote_id: int, url: str) -> tuple[EntityState, bool]:
    """
    Get or create the entity for a remote ID and record URL moves.

    Returns:
        (entity, created)
    """
    entity = await uow.entities.get_by_remote_id(remote_id)
    if entity is None:
        entity = EntityState(remote_id=remote_id, current_url=url, url_history=[url])
        entity.id = await uow.entities.create(entity)
        logger.debug(f"Created entity {remote_id} at {url}")
        return entity, True

    changed = False
    if url and entity.current_url != url:
        logger.info(f"Entity {remote_id} moved from {entity.current_url} to {url}")
        entity.current_url = url
        changed = True
    if url and url not in entity.url_history:
        entity.url_history = entity.url_history + [url]
        changed = True
    if changed:
        await uow.entities.update(entity)
    return entity, False


async def current_version_id(uow: UnitOfWork, entity_id: int) -> int:
    """Resolve the open version right before a child-record write"""
    version = await uow.versions.get_current(entity_id)
    if version is None:
        raise SyncError(f"Entity {entity_id} has no current version")
    return version.id


def _users_of(
    attributions: Sequence[AttributionRecord] = (),
    revisions: Sequence[RevisionRecord] = (),
    votes: Sequence[VoteRecord] = (),
) -> list[RemoteUser]:
    users = []
    for record in (*attributions, *revisions, *votes):
        if record.user is not None and record.user.remote_id is not None:
            users.append(record.user)
    return users


# ============ Writes ============

async def write_children(
    uow: UnitOfWork,
    entity_id: int,
    attributions: Optional[Sequence[AttributionRecord]] = None,
    revisions: Sequence[RevisionRecord] = (),
    votes: Sequence[VoteRecord] = (),
) -> tuple[int, int, int]:
    """
    Write child records against the entity's current version.

    Returns:
        (attributions, revisions, votes) written
    """
    users = _users_of(attributions or (), revisions, votes)
    if users:
        await uow.users.upsert_many(users)

    written_attributions = 0
    if attributions:
        version_id = await current_version_id(uow, entity_id)
        written_attributions = await uow.attributions.upsert_many(version_id, attributions)

    written_revisions = 0
    if revisions:
        version_id = await current_version_id(uow, entity_id)
        written_revisions = await uow.revisions.upsert_many(version_id, revisions)
        uow.record_metric("revisions_written", written_revisions)

    written_votes = 0
    if votes:
        version_id = await current_version_id(uow, entity_id)
        written_votes = await uow.votes.upsert_many(version_id, votes)
        uow.record_metric("votes_written", written_votes)

    return written_attributions, written_revisions, written_votes


async def upsert_content(uow: UnitOfWork, content: PageContent, now: Optional[datetime] = None) -> UpsertOutcome:
    """
    Persist one fully fetched entity.

    Applies the version gate, then writes attributions, revisions and votes.
    A previously deleted entity is revived when the remote returns content
    for it.

    Args:
        uow: Unit of work to write through
        content: Parsed lookup result; remote_id must be set
        now: Version boundary timestamp, defaults to the current time

    Returns:
        UpsertOutcome describing what changed
    """
    if content.remote_id is None:
        raise SyncError(f"Content for {content.url} has no remote id")
    now = now or _utcnow()

    entity, created = await ensure_entity(uow, content.remote_id, content.url)
    if entity.is_deleted and not content.is_deleted:
        logger.info(f"Entity {entity.remote_id} is back on the remote, restoring")
        entity.is_deleted = False
        await uow.entities.update(entity)

    current = await uow.versions.get_current(entity.id)
    incoming = version_from_content(content, current)

    opened = should_create_new_version(current, incoming)
    if opened:
        if current is not None:
            await uow.versions.close(current.id, now)
        incoming.entity_id = entity.id
        incoming.valid_from = now
        version_id = await uow.versions.create(incoming)
        uow.record_metric("versions_opened")
    else:
        version_id = current.id
        await uow.versions.patch_current(
            version_id,
            **_present(
                rating=incoming.rating,
                vote_count=incoming.vote_count,
                revision_count=incoming.revision_count,
                comment_count=incoming.comment_count,
                alternate_title=incoming.alternate_title,
                attribution_count=incoming.attribution_count,
            ),
        )

    attributions, revisions, votes = await write_children(
        uow,
        entity.id,
        attributions=content.attributions,
        revisions=content.revisions.items if content.revisions else (),
        votes=content.votes.items if content.votes else (),
    )
    uow.record_metric("entities_saved")

    return UpsertOutcome(
        entity_id=entity.id,
        version_id=version_id,
        created_entity=created,
        opened_version=opened,
        attributions_written=attributions,
        revisions_written=revisions,
        votes_written=votes,
    )


async def import_children(
    uow: UnitOfWork,
    remote_id: int,
    revisions: Sequence[RevisionRecord],
    votes: Sequence[VoteRecord],
) -> tuple[int, int]:
    """
    Flush revisions and votes gathered by exhaustive pagination.

    Returns:
        (revisions, votes) written
    """
    entity = await uow.entities.get_by_remote_id(remote_id)
    if entity is None:
        raise SyncError(f"No local entity for remote id {remote_id}")
    _, written_revisions, written_votes = await write_children(
        uow, entity.id, revisions=revisions, votes=votes
    )
    return written_revisions, written_votes


async def mark_deleted(uow: UnitOfWork, entity: EntityState, now: Optional[datetime] = None) -> bool:
    """
    Close the open version and open a deleted copy of it.

    Returns:
        False if the entity was already marked deleted
    """
    now = now or _utcnow()
    current = await uow.versions.get_current(entity.id)

    if entity.is_deleted and (current is None or current.is_deleted):
        return False

    if current is not None and not current.is_deleted:
        await uow.versions.close(current.id, now)
        current.id = None
        current.entity_id = entity.id
        current.is_deleted = True
        current.valid_from = now
        current.valid_to = None
        await uow.versions.create(current)
        uow.record_metric("versions_opened")

    entity.is_deleted = True
    await uow.entities.update(entity)
    uow.record_metric("entities_deleted")
    logger.info(f"Marked entity {entity.remote_id} ({entity.current_url}) deleted")
    return True


async def patch_snapshot_fields(uow: UnitOfWork, version: VersionState, scanned: ScannedPage) -> None:
    """
    Refresh attributions, comment count and alternate title on an open version.

    Used by the inventory scan. The alternate title is left alone on a deleted
    version.
    """
    fields = {}
    if scanned.attributions is not None:
        users = _users_of(attributions=scanned.attributions)
        if users:
            await uow.users.upsert_many(users)
        await uow.attributions.upsert_many(version.id, scanned.attributions)
        fields["attribution_count"] = len(scanned.attributions)
    if scanned.comment_count is not None:
        fields["comment_count"] = scanned.comment_count
    if not version.is_deleted and scanned.alternate_title is not None:
        fields["alternate_title"] = scanned.alternate_title
    if fields:
        await uow.versions.patch_current(version.id, **fields)


def _present(**fields) -> dict:
    return {k: v for k, v in fields.items() if v is not None}
