"""Dirty queue - diff the inventory snapshot against local state

The queue is rebuilt from scratch after every inventory scan. Each staging row
is compared with the local entity and its current version; anything that
differs becomes a record flagged for the batch phase, with one reason per
difference. The batch phase decides afterwards which entities also need the
exhaustive phase.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .db.entities import DirtyRecord, EntityState, QueueStats, StagingRow, VersionState
from .db.repositories.base import BATCH_PHASE, EXHAUSTIVE_PHASE, UnitOfWork
from .db.repositories.factory import UnitOfWorkFactory
from .observability import get_logger, log_with_context, metrics
from .versioning import mark_deleted, normalize_category, same_tags


logger = get_logger("dirty_queue")

# Reasons
NEW_ENTITY = "new_entity"
NO_CURRENT_VERSION = "no_current_version"
ENTITY_DELETED = "entity_deleted"
ENTITY_RESTORED = "entity_restored"
TITLE_CHANGED = "title_changed"
RATING_CHANGED = "rating_changed"
TAGS_CHANGED = "tags_changed"
CATEGORY_CHANGED = "category_changed"
ATTRIBUTION_CHANGED = "attribution_changed"
VOTE_COUNT_CHANGED = "vote_count_changed"
REVISION_COUNT_CHANGED = "revision_count_changed"
URL_CHANGED = "url_changed"
INCOMPLETE_REVISIONS = "incomplete_revisions"
INCOMPLETE_VOTES = "incomplete_votes"
EXHAUSTIVE_FETCH_FAILED = "exhaustive_fetch_failed"


def diff_snapshot(
    snapshot: StagingRow,
    entity: Optional[EntityState],
    current: Optional[VersionState],
) -> list[str]:
    """
    Reasons an entity needs refetching; empty when local state matches.

    Args:
        snapshot: Freshly scanned staging row
        entity: Local entity with the same remote ID, or None
        current: Its open version, or None

    Returns:
        Reasons in a stable order
    """
    if entity is None:
        return [NEW_ENTITY]
    if current is None:
        return [NO_CURRENT_VERSION]
    if snapshot.is_deleted and not current.is_deleted:
        return [ENTITY_DELETED]
    if current.is_deleted and not snapshot.is_deleted:
        return [ENTITY_RESTORED]
    if snapshot.is_deleted:
        return []

    reasons = []
    if snapshot.title != current.title:
        reasons.append(TITLE_CHANGED)
    if snapshot.rating != current.rating:
        reasons.append(RATING_CHANGED)
    if not same_tags(snapshot.tags, current.tags):
        reasons.append(TAGS_CHANGED)
    if normalize_category(snapshot.category) != normalize_category(current.category):
        reasons.append(CATEGORY_CHANGED)
    if snapshot.attribution_count != current.attribution_count:
        reasons.append(ATTRIBUTION_CHANGED)
    if snapshot.vote_count != current.vote_count:
        reasons.append(VOTE_COUNT_CHANGED)
    if snapshot.revision_count != current.revision_count:
        reasons.append(REVISION_COUNT_CHANGED)
    if snapshot.url != entity.current_url:
        reasons.append(URL_CHANGED)
    return reasons


@dataclass
class RebuildResult:
    """Outcome of one queue rebuild"""
    scanned: int = 0
    queued: int = 0
    reasons: Counter = field(default_factory=Counter)
    absent_deleted: int = 0
    replaced_deleted: int = 0

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "queued": self.queued,
            "reasons": dict(self.reasons),
            "absent_deleted": self.absent_deleted,
            "replaced_deleted": self.replaced_deleted,
        }


async def rebuild(
    uow_factory: UnitOfWorkFactory,
    chunk_size: int = 500,
    reconcile: bool = True,
) -> RebuildResult:
    """
    Replace the queue with the diff of staging against local state.

    Args:
        uow_factory: Opens units of work
        chunk_size: Staging rows compared per query round
        reconcile: Run deletion reconciliation; only valid after a full scan

    Returns:
        RebuildResult with per-reason counts
    """
    result = RebuildResult()
    replaced: dict[int, EntityState] = {}

    async with uow_factory() as uow:
        cleared = await uow.dirty_queue.clear_all()
        logger.debug(f"Cleared {cleared} dirty queue records")

        after = None
        while True:
            rows = await uow.staging.list_page(after, chunk_size)
            if not rows:
                break
            after = rows[-1].remote_id
            result.scanned += len(rows)

            records = await _diff_chunk(uow, rows, result)
            if records:
                await uow.dirty_queue.create_many(records)
                result.queued += len(records)

            if reconcile:
                for entity in await _replaced_entities(uow, rows):
                    replaced[entity.id] = entity

    if reconcile and result.scanned == 0:
        logger.warning("Staging is empty, skipping deletion reconciliation")
    elif reconcile:
        result.replaced_deleted = await _delete_all(uow_factory, list(replaced.values()), "url reused")
        async with uow_factory() as uow:
            absent = await uow.entities.list_active_absent_from_staging()
        result.absent_deleted = await _delete_all(uow_factory, absent, "absent from inventory")

    logger.info(
        f"Dirty queue rebuilt: {result.queued}/{result.scanned} queued, "
        f"{result.absent_deleted} absent, {result.replaced_deleted} replaced"
    )
    return result


async def _diff_chunk(uow: UnitOfWork, rows: Sequence[StagingRow], result: RebuildResult) -> list[DirtyRecord]:
    entities = await uow.entities.get_many_by_remote_id([r.remote_id for r in rows])
    versions = await uow.versions.get_current_many([e.id for e in entities.values()])

    records = []
    for row in rows:
        entity = entities.get(row.remote_id)
        current = versions.get(entity.id) if entity else None
        reasons = diff_snapshot(row, entity, current)
        if not reasons:
            continue
        result.reasons.update(reasons)
        records.append(DirtyRecord(
            remote_id=row.remote_id,
            entity_id=entity.id if entity else None,
            staging_url=row.url,
            need_batch_fetch=True,
            reasons=reasons,
        ))
    return records


async def _replaced_entities(uow: UnitOfWork, rows: Sequence[StagingRow]) -> list[EntityState]:
    """
    Local entities whose URL now belongs to a different remote ID.

    Only entities whose own remote ID is absent from staging count as
    replaced; one still present was merely renamed.
    """
    by_url = {r.url: r.remote_id for r in rows}
    holders = await uow.entities.list_active_by_urls(list(by_url))
    holders = [e for e in holders if by_url.get(e.current_url) != e.remote_id]
    if not holders:
        return []
    staged = await uow.staging.get_many([e.remote_id for e in holders])
    return [e for e in holders if e.remote_id not in staged]


async def _delete_all(uow_factory: UnitOfWorkFactory, entities: Sequence[EntityState], why: str) -> int:
    deleted = 0
    for entity in entities:
        log = log_with_context(logger, remote_id=entity.remote_id, url=entity.current_url)
        try:
            async with uow_factory() as uow:
                if await mark_deleted(uow, entity):
                    deleted += 1
                    log.info(f"Deleted entity: {why}")
        except Exception as e:
            metrics.increment("entities_failed")
            log.error(f"Failed to mark entity deleted ({why}): {e}")
    return deleted


# ============ Queue operations ============

async def fetch_pending(uow: UnitOfWork, phase: str, limit: int) -> list[DirtyRecord]:
    """Records still needing a phase"""
    return await uow.dirty_queue.list_pending(phase, limit)


async def clear_flag(uow: UnitOfWork, remote_id: int, phase: str) -> None:
    await uow.dirty_queue.clear_flag(remote_id, phase)


async def mark_exhaustive(uow: UnitOfWork, remote_id: int, reasons: Sequence[str]) -> None:
    await uow.dirty_queue.mark_exhaustive(remote_id, reasons)


async def append_reason(uow: UnitOfWork, remote_id: int, reason: str) -> None:
    await uow.dirty_queue.append_reasons(remote_id, [reason])


async def stats(uow: UnitOfWork) -> QueueStats:
    return await uow.dirty_queue.stats()
