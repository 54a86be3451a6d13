"""Phase B: targeted batch fetch - Aliased, cost-bounded content requests"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..context import SyncContext
from ..cost import batch_entity_cost, bin_by_cost
from ..db.entities import DirtyRecord, StagingRow
from ..db.repositories.base import BATCH_PHASE, EXHAUSTIVE_PHASE, UnitOfWork
from ..dirty_queue import ENTITY_DELETED, INCOMPLETE_REVISIONS, INCOMPLETE_VOTES
from ..observability import get_logger, log_with_context, metrics
from ..remote.queries import AliasSlot, build_alias_query
from ..remote.records import Connection, PageContent, parse_page_content
from ..versioning import mark_deleted, upsert_content


logger = get_logger("jobs.batch_fetch")

SAVED = "saved"
DELETED = "deleted"
SKIPPED = "skipped"


@dataclass
class BatchItem:
    """One dirty entity prepared for an aliased request"""
    remote_id: int
    url: str
    revision_count: int
    vote_count: int
    cost: int
    reasons: list[str] = field(default_factory=list)
    staging_deleted: bool = False


@dataclass
class BatchFetchResult:
    """Outcome of a batch fetch run"""
    processed: int = 0
    saved: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    buckets: int = 0
    exhaustive_flagged: int = 0
    rounds: int = 0


@dataclass
class _Applied:
    remote_id: int
    outcome: str
    flagged: bool = False


def prepare_item(record: DirtyRecord, staging: StagingRow, batch_limit: int) -> BatchItem:
    revision_count = max(0, staging.revision_count or 0)
    vote_count = max(0, staging.vote_count or 0)
    return BatchItem(
        remote_id=record.remote_id,
        url=staging.url,
        revision_count=revision_count,
        vote_count=vote_count,
        cost=batch_entity_cost(revision_count, vote_count, batch_limit),
        reasons=list(record.reasons),
        staging_deleted=staging.is_deleted,
    )


def is_truncated(connection: Optional[Connection], requested: int) -> bool:
    """More items certainly remain: the server says so and the page came back full"""
    if connection is None or requested <= 0:
        return False
    return connection.has_next_page and connection.returned >= requested


def truncation_reasons(content: PageContent, slot: AliasSlot) -> list[str]:
    reasons = []
    if is_truncated(content.revisions, slot.revision_first):
        reasons.append(INCOMPLETE_REVISIONS)
    if is_truncated(content.votes, slot.vote_first):
        reasons.append(INCOMPLETE_VOTES)
    return reasons


async def apply_result(uow: UnitOfWork, item: BatchItem, slot: AliasSlot, node: Optional[dict]) -> _Applied:
    """
    Apply one alias result.

    No data is treated as a deletion only when staging or the queue reasons
    already say the entity is gone; otherwise the entity is dequeued untouched.
    """
    log = log_with_context(logger, remote_id=item.remote_id, url=item.url)

    if node is None:
        if item.staging_deleted or ENTITY_DELETED in item.reasons:
            entity = await uow.entities.get_by_remote_id(item.remote_id)
            if entity is not None:
                await mark_deleted(uow, entity)
            await uow.dirty_queue.clear_flag(item.remote_id, BATCH_PHASE)
            await uow.dirty_queue.clear_flag(item.remote_id, EXHAUSTIVE_PHASE)
            return _Applied(item.remote_id, DELETED)
        log.warning("No data returned without deletion evidence, leaving entity untouched")
        await uow.dirty_queue.clear_flag(item.remote_id, BATCH_PHASE)
        return _Applied(item.remote_id, SKIPPED)

    content = parse_page_content(node, remote_id=item.remote_id)
    if content.remote_id != item.remote_id:
        log.warning(f"URL now resolves to remote id {content.remote_id}, skipping")
        await uow.dirty_queue.clear_flag(item.remote_id, BATCH_PHASE)
        return _Applied(item.remote_id, SKIPPED)

    await upsert_content(uow, content)
    await uow.dirty_queue.clear_flag(item.remote_id, BATCH_PHASE)

    reasons = truncation_reasons(content, slot)
    if reasons:
        await uow.dirty_queue.mark_exhaustive(item.remote_id, reasons)
        log.debug(f"Flagged for exhaustive fetch: {', '.join(reasons)}")
    return _Applied(item.remote_id, SAVED, flagged=bool(reasons))


async def _apply_chunk(
    ctx: SyncContext,
    entries: Sequence[tuple[BatchItem, AliasSlot]],
    data: dict,
) -> list[_Applied]:
    async with ctx.uow_factory() as uow:
        await uow.use_serializable()
        return [await apply_result(uow, item, slot, data.get(slot.alias)) for item, slot in entries]


async def _force_clear(ctx: SyncContext, remote_id: int) -> None:
    try:
        async with ctx.uow_factory() as uow:
            await uow.dirty_queue.clear_flag(remote_id, BATCH_PHASE)
    except Exception as e:
        logger.error(f"Could not clear batch flag for {remote_id}: {e}")


def _tally(result: BatchFetchResult, applied: Sequence[_Applied]) -> None:
    for entry in applied:
        result.processed += 1
        if entry.outcome == SAVED:
            result.saved += 1
        elif entry.outcome == DELETED:
            result.deleted += 1
        else:
            result.skipped += 1
        if entry.flagged:
            result.exhaustive_flagged += 1


async def flush_bucket(ctx: SyncContext, bucket: Sequence[BatchItem], result: BatchFetchResult) -> None:
    """
    Fetch one bucket with a single aliased request and store the results.

    Results are written in chunks, each in its own serializable transaction
    with a timeout. A failing chunk is retried one entity at a time; an entity
    that still fails has its batch flag force-cleared.
    """
    settings = ctx.settings
    query = build_alias_query(bucket, settings.batch_limit)
    cost = sum(item.cost for item in bucket)
    metrics.increment("points_estimated", cost)

    if cost > settings.query_point_budget:
        logger.warning(f"Bucket estimate {cost} exceeds the remote point budget {settings.query_point_budget}")
    result.buckets += 1
    logger.info(f"Bucket {result.buckets}: {len(bucket)} entities (~{cost} pts)")

    data = await ctx.client.request(query.query, query.variables)
    entries = list(zip(bucket, query.slots))

    for start in range(0, len(entries), settings.chunk_size):
        chunk = entries[start:start + settings.chunk_size]
        try:
            applied = await asyncio.wait_for(
                _apply_chunk(ctx, chunk, data), timeout=settings.transaction_timeout_seconds
            )
            _tally(result, applied)
            continue
        except Exception as e:
            logger.error(f"Chunk {start}-{start + len(chunk)} failed, retrying individually: {e}")

        for item, slot in chunk:
            try:
                applied = await asyncio.wait_for(
                    _apply_chunk(ctx, [(item, slot)], data), timeout=settings.transaction_timeout_seconds
                )
                _tally(result, applied)
            except Exception as e:
                result.processed += 1
                result.failed += 1
                metrics.increment("entities_failed")
                log_with_context(logger, remote_id=item.remote_id, url=item.url).error(
                    f"Entity failed, force-clearing batch flag: {e}"
                )
                await _force_clear(ctx, item.remote_id)


async def run_batch_fetch(ctx: SyncContext, max_entities: Optional[int] = None) -> BatchFetchResult:
    """
    Drain entities flagged for the batch phase.

    Args:
        ctx: Sync run context
        max_entities: Stop after this many entities (None drains the queue)

    Returns:
        BatchFetchResult with per-outcome counters
    """
    settings = ctx.settings
    result = BatchFetchResult()
    seen: set[int] = set()

    async with ctx.uow_factory() as uow:
        total = (await uow.dirty_queue.stats()).batch_pending
    logger.info(f"Batch fetch started: {total} entities pending")

    while True:
        limit = settings.batch_round_limit
        if max_entities is not None:
            limit = min(limit, max_entities - result.processed)
            if limit <= 0:
                break

        async with ctx.uow_factory() as uow:
            records = await uow.dirty_queue.list_pending(BATCH_PHASE, limit)
            records = [r for r in records if r.remote_id not in seen]
            seen.update(r.remote_id for r in records)
            staging = await uow.staging.get_many([r.remote_id for r in records])

            items = []
            for record in records:
                row = staging.get(record.remote_id)
                if row is None:
                    logger.warning(f"No staging row for {record.remote_id}, dequeuing")
                    await uow.dirty_queue.clear_flag(record.remote_id, BATCH_PHASE)
                    result.processed += 1
                    result.skipped += 1
                    continue
                items.append(prepare_item(record, row, settings.batch_limit))

        if not records:
            break
        result.rounds += 1

        buckets = bin_by_cost(
            items,
            cost=lambda item: item.cost,
            soft_budget=settings.bucket_soft_limit,
            max_items=settings.bucket_max_items,
        )
        logger.info(f"Round {result.rounds}: {len(items)} entities in {len(buckets)} buckets")
        for bucket in buckets:
            await flush_bucket(ctx, bucket, result)

        logger.info(f"Batch progress: {result.processed}/{total}")

    logger.info(
        f"Batch fetch done: {result.saved} saved, {result.deleted} deleted, "
        f"{result.skipped} skipped, {result.failed} failed, "
        f"{result.exhaustive_flagged} flagged for exhaustive fetch"
    )
    return result
