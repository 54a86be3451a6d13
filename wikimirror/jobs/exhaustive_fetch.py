"""Phase C: exhaustive fetch - Per-entity pagination of revisions and votes

Each entity keeps two cursors, one per sub-collection. A round requests only
the sub-collections whose cursor is still pending, so an entity with many
votes but few revisions stops paying for revisions after the first round.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from ..context import QueryClient, SyncContext
from ..cost import is_complex
from ..db.entities import DirtyRecord
from ..db.repositories.base import EXHAUSTIVE_PHASE
from ..dirty_queue import EXHAUSTIVE_FETCH_FAILED
from ..observability import get_logger, log_with_context, metrics
from ..remote.queries import CursorState, Exhausted, Pending, build_exhaustive_query
from ..remote.records import (
    RevisionRecord,
    VoteRecord,
    parse_connection,
    parse_revision,
    parse_vote,
)
from ..versioning import import_children


T = TypeVar("T")
R = TypeVar("R")

logger = get_logger("jobs.exhaustive_fetch")

SUCCEEDED = "succeeded"
FAILED = "failed"
MISSING = "missing"


@dataclass
class ExhaustiveFetchResult:
    """Outcome of an exhaustive fetch run"""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    missing: int = 0
    requests: int = 0
    rounds: int = 0


@dataclass
class Collected:
    """Everything gathered for one entity"""
    revisions: list[RevisionRecord] = field(default_factory=list)
    votes: list[VoteRecord] = field(default_factory=list)
    requests: int = 0
    missing: bool = False


def next_cursor(connection, field_name: str, url: str) -> CursorState:
    """Cursor state after one page; a page without a usable cursor ends pagination"""
    if connection is None:
        logger.warning(f"{url}: {field_name} missing from response, treating as exhausted")
        return Exhausted()
    if connection.has_next_page and connection.end_cursor:
        return Pending(connection.end_cursor)
    if connection.has_next_page:
        logger.warning(f"{url}: {field_name} reports more pages but no end cursor")
    return Exhausted()


async def collect_entity(client: QueryClient, url: str, page_size: int) -> Collected:
    """
    Page through an entity's revisions and votes until both are exhausted.

    One request per round; a null entity ends the loop with missing=True.
    """
    collected = Collected()
    revisions: CursorState = Pending()
    votes: CursorState = Pending()

    while isinstance(revisions, Pending) or isinstance(votes, Pending):
        query, variables = build_exhaustive_query(url, revisions, votes, page_size)
        data = await client.request(query, variables)
        collected.requests += 1

        node = data.get("page")
        if node is None:
            collected.missing = True
            break

        if isinstance(revisions, Pending):
            connection = parse_connection(node.get("revisions"), parse_revision)
            if connection is not None:
                collected.revisions.extend(connection.items)
            revisions = next_cursor(connection, "revisions", url)
        if isinstance(votes, Pending):
            connection = parse_connection(node.get("fuzzyVoteRecords"), parse_vote)
            if connection is not None:
                collected.votes.extend(connection.items)
            votes = next_cursor(connection, "votes", url)

    return collected


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> list[R]:
    """Run worker over items with at most `concurrency` in flight, preserving order"""
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def bounded(item: T) -> R:
        async with semaphore:
            return await worker(item)

    return await asyncio.gather(*(bounded(item) for item in items))


async def _force_clear(ctx: SyncContext, remote_id: int) -> None:
    try:
        async with ctx.uow_factory() as uow:
            await uow.dirty_queue.clear_flag(remote_id, EXHAUSTIVE_PHASE)
            await uow.dirty_queue.append_reasons(remote_id, [EXHAUSTIVE_FETCH_FAILED])
    except Exception as e:
        logger.error(f"Could not clear exhaustive flag for {remote_id}: {e}")


async def process_entity(ctx: SyncContext, record: DirtyRecord, url: str) -> tuple[str, int]:
    """
    Exhaustively fetch one entity and flush its child records in one write.

    Returns:
        (outcome, requests issued)
    """
    log = log_with_context(logger, remote_id=record.remote_id, url=url)
    collected = Collected()
    try:
        collected = await collect_entity(ctx.client, url, ctx.settings.batch_limit)

        if collected.missing:
            log.warning("Entity returned null, dequeuing without deleting")
            async with ctx.uow_factory() as uow:
                await uow.dirty_queue.clear_flag(record.remote_id, EXHAUSTIVE_PHASE)
            return MISSING, collected.requests

        async with ctx.uow_factory() as uow:
            revisions, votes = await import_children(
                uow, record.remote_id, collected.revisions, collected.votes
            )
            await uow.dirty_queue.clear_flag(record.remote_id, EXHAUSTIVE_PHASE)

        log.debug(
            f"Stored {revisions} revisions and {votes} votes in {collected.requests} requests"
        )
        return SUCCEEDED, collected.requests

    except Exception as e:
        metrics.increment("entities_failed")
        log.error(f"Exhaustive fetch failed, force-clearing flag: {e}")
        await _force_clear(ctx, record.remote_id)
        return FAILED, collected.requests


async def run_exhaustive_fetch(ctx: SyncContext, max_entities: Optional[int] = None) -> ExhaustiveFetchResult:
    """
    Drain entities flagged for the exhaustive phase with a bounded worker pool.

    Args:
        ctx: Sync run context
        max_entities: Stop after this many entities (None drains the queue)

    Returns:
        ExhaustiveFetchResult with per-outcome counters
    """
    settings = ctx.settings
    result = ExhaustiveFetchResult()
    seen: set[int] = set()

    while True:
        limit = settings.exhaustive_round_limit
        if max_entities is not None:
            limit = min(limit, max_entities - result.processed)
            if limit <= 0:
                break

        async with ctx.uow_factory() as uow:
            records = await uow.dirty_queue.list_pending(EXHAUSTIVE_PHASE, limit)
            staging = await uow.staging.get_many([r.remote_id for r in records])
            entities = await uow.entities.get_many_by_remote_id([r.remote_id for r in records])

        records = [r for r in records if r.remote_id not in seen]
        if not records:
            break
        seen.update(r.remote_id for r in records)
        result.rounds += 1

        complex_count = sum(
            1 for r in records
            if r.remote_id in staging
            and is_complex(staging[r.remote_id].estimated_cost, settings.simple_cost_threshold)
        )
        logger.info(
            f"Round {result.rounds}: {len(records)} entities "
            f"({complex_count} complex), concurrency {settings.exhaustive_concurrency}"
        )

        def url_of(record: DirtyRecord) -> Optional[str]:
            if record.staging_url:
                return record.staging_url
            entity = entities.get(record.remote_id)
            return entity.current_url if entity else None

        async def worker(record: DirtyRecord) -> tuple[str, int]:
            url = url_of(record)
            if url is None:
                logger.error(f"No URL known for {record.remote_id}, force-clearing")
                await _force_clear(ctx, record.remote_id)
                return FAILED, 0
            return await process_entity(ctx, record, url)

        outcomes = await run_bounded(records, worker, settings.exhaustive_concurrency)
        for outcome, requests in outcomes:
            result.processed += 1
            result.requests += requests
            if outcome == SUCCEEDED:
                result.succeeded += 1
            elif outcome == MISSING:
                result.missing += 1
            else:
                result.failed += 1

    logger.info(
        f"Exhaustive fetch done: {result.succeeded} succeeded, {result.failed} failed, "
        f"{result.missing} missing, {result.requests} requests"
    )
    return result
