"""Phase A: inventory scan - Walk the remote collection into staging"""

import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Sequence

from ..context import SyncContext
from ..cost import ChildCounts, inventory_cost
from ..db.entities import QueueStats, StagingRow, _utcnow
from ..dirty_queue import RebuildResult, rebuild
from ..observability import get_logger, log_with_context
from ..remote.queries import (
    INVENTORY_QUERY,
    TOTAL_COUNT_QUERY,
    inventory_variables,
    url_prefix_filter,
)
from ..remote.records import ScannedPage, parse_scanned_page
from ..versioning import patch_snapshot_fields


logger = get_logger("jobs.inventory")


@dataclass
class InventoryResult:
    """Outcome of one inventory scan"""
    total_scanned: int = 0
    total_reported: Optional[int] = None
    pages: int = 0
    skipped: int = 0
    side_updates: int = 0
    side_update_failures: int = 0
    purged: int = 0
    elapsed_seconds: float = 0.0
    queue_stats: QueueStats = field(default_factory=QueueStats)
    rebuild: Optional[RebuildResult] = None


def staging_row_from(page: ScannedPage, cost_floor: int = 20) -> StagingRow:
    """Staging row for a scanned node, with the cost of a hypothetical full fetch"""
    counts = ChildCounts(revision_count=page.revision_count, vote_count=page.vote_count)
    return StagingRow(
        remote_id=page.remote_id,
        url=page.url,
        title=page.title,
        rating=page.rating,
        vote_count=page.vote_count,
        revision_count=page.revision_count,
        comment_count=page.comment_count,
        tags=list(page.tags),
        category=page.category,
        attribution_count=len(page.attributions or []),
        parent_url=page.parent_url,
        alternate_title=page.alternate_title,
        is_deleted=page.is_deleted,
        estimated_cost=inventory_cost(counts, floor=cost_floor),
        last_seen_at=_utcnow(),
    )


async def fetch_total_count(ctx: SyncContext) -> Optional[int]:
    """Remote entity count, used for progress reporting only"""
    data = await ctx.client.request(
        TOTAL_COUNT_QUERY,
        {"filter": url_prefix_filter(ctx.settings.inventory_url_prefix)},
    )
    aggregate = data.get("aggregatePages") or {}
    count = aggregate.get("_count")
    return int(count) if count is not None else None


async def apply_side_updates(ctx: SyncContext, pages: Sequence[ScannedPage]) -> tuple[int, int]:
    """
    Best-effort refresh of snapshot-only fields on existing current versions.

    Each entity is written in its own unit of work; failures are logged and
    skipped.

    Returns:
        (updated, failed)
    """
    async with ctx.uow_factory() as uow:
        entities = await uow.entities.get_many_by_remote_id([p.remote_id for p in pages])
        versions = await uow.versions.get_current_many([e.id for e in entities.values()])

    updated = failed = 0
    for page in pages:
        entity = entities.get(page.remote_id)
        version = versions.get(entity.id) if entity else None
        if version is None:
            continue
        try:
            async with ctx.uow_factory() as uow:
                await patch_snapshot_fields(uow, version, page)
            updated += 1
        except Exception as e:
            failed += 1
            log_with_context(logger, remote_id=page.remote_id, url=page.url).warning(
                f"Side update failed: {e}"
            )
    return updated, failed


async def run_inventory(ctx: SyncContext, test_batch: bool = False) -> InventoryResult:
    """
    Scan the whole remote collection into staging and rebuild the dirty queue.

    Args:
        ctx: Sync run context
        test_batch: Scan only the first page; the partial snapshot cannot prove
            absence, so deletion reconciliation is skipped

    Returns:
        InventoryResult with scan counters and queue statistics
    """
    settings = ctx.settings
    started = time.monotonic()
    result = InventoryResult()

    result.total_reported = await fetch_total_count(ctx)
    logger.info(f"Inventory scan started, remote reports {result.total_reported} entities")

    async with ctx.uow_factory() as uow:
        cleared = await uow.staging.truncate()
    logger.debug(f"Truncated {cleared} staging rows")

    after = None
    while True:
        data = await ctx.client.request(
            INVENTORY_QUERY,
            inventory_variables(settings.inventory_url_prefix, settings.inventory_page_size, after),
        )
        connection = data.get("pages") or {}
        pages = []
        for edge in connection.get("edges") or []:
            node = edge.get("node")
            if not node:
                continue
            page = parse_scanned_page(node)
            if page.remote_id is None:
                result.skipped += 1
                logger.warning(f"Skipping node without remote id: {page.url}")
                continue
            pages.append(page)

        async with ctx.uow_factory() as uow:
            for page in pages:
                await uow.staging.upsert(staging_row_from(page, settings.inventory_cost_floor))

        updated, failed = await apply_side_updates(ctx, pages)
        result.side_updates += updated
        result.side_update_failures += failed
        result.total_scanned += len(pages)
        result.pages += 1

        if result.pages % 10 == 0:
            logger.info(f"Inventory progress: {result.total_scanned}/{result.total_reported}")

        page_info = connection.get("pageInfo") or {}
        if test_batch or not page_info.get("hasNextPage") or not page_info.get("endCursor"):
            break
        after = page_info["endCursor"]

    result.rebuild = await rebuild(ctx.uow_factory, chunk_size=settings.chunk_size, reconcile=not test_batch)

    cutoff = _utcnow() - timedelta(hours=settings.staging_max_age_hours)
    async with ctx.uow_factory() as uow:
        result.purged = await uow.staging.purge_older_than(cutoff)
        result.queue_stats = await uow.dirty_queue.stats()

    result.elapsed_seconds = time.monotonic() - started
    logger.info(
        f"Inventory scan done: {result.total_scanned} scanned in {result.elapsed_seconds:.1f}s, "
        f"queue {result.queue_stats.to_dict()}"
    )
    return result
