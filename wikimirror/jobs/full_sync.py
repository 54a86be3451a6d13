"""Full sync job - Inventory scan, batch fetch, then exhaustive fetch"""

from dataclasses import dataclass
from typing import Optional

from ..context import SyncContext
from ..observability import get_logger, metrics
from .batch_fetch import BatchFetchResult, run_batch_fetch
from .exhaustive_fetch import ExhaustiveFetchResult, run_exhaustive_fetch
from .inventory import InventoryResult, run_inventory


logger = get_logger("jobs.full_sync")


@dataclass
class FullSyncResult:
    inventory: Optional[InventoryResult] = None
    batch: Optional[BatchFetchResult] = None
    exhaustive: Optional[ExhaustiveFetchResult] = None


async def run_full_sync(ctx: SyncContext, test_batch: bool = False) -> FullSyncResult:
    """
    Run every phase in order.

    Each phase persists its progress in the dirty queue, so a run aborted
    part-way can be resumed by running the remaining phases on their own.

    Args:
        ctx: Sync run context
        test_batch: Scan a single inventory page and skip deletion reconciliation

    Returns:
        FullSyncResult with each phase's result
    """
    result = FullSyncResult()

    logger.info("=== Phase A: inventory scan ===")
    result.inventory = await run_inventory(ctx, test_batch=test_batch)

    logger.info("=== Phase B: batch fetch ===")
    result.batch = await run_batch_fetch(ctx)

    logger.info("=== Phase C: exhaustive fetch ===")
    result.exhaustive = await run_exhaustive_fetch(ctx)

    logger.info(f"Full sync finished: {metrics.to_dict()}")
    return result
