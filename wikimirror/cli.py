"""
Sync runner CLI

Usage:
    # Create tables
    python -m wikimirror.cli init-db

    # Run one phase
    python -m wikimirror.cli inventory [--test-batch]
    python -m wikimirror.cli batch [--limit N]
    python -m wikimirror.cli exhaustive [--limit N]

    # Run all phases
    python -m wikimirror.cli full

    # Show dirty queue counters
    python -m wikimirror.cli status
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from .context import SyncContext
from .db.config import settings
from .db.database import close_db, get_session, init_db
from .db.repositories.postgres import PostgresUnitOfWork
from .observability import metrics, setup_logging


async def cmd_init_db(args):
    """Create all tables"""
    await init_db()
    print("Database initialized")
    return 0


async def cmd_status(args):
    """Print dirty queue counters"""
    async with get_session() as session:
        uow = PostgresUnitOfWork(session)
        stats = await uow.dirty_queue.stats()
        entities = await uow.entities.count(include_deleted=False)
        staged = await uow.staging.count()
    print(json.dumps({"entities": entities, "staging": staged, "queue": stats.to_dict()}, indent=2))
    return 0


async def cmd_phase(args):
    """Run one or all sync phases"""
    from .jobs.batch_fetch import run_batch_fetch
    from .jobs.exhaustive_fetch import run_exhaustive_fetch
    from .jobs.full_sync import run_full_sync
    from .jobs.inventory import run_inventory

    ctx = SyncContext.from_settings(settings)
    try:
        if args.command == "inventory":
            result = await run_inventory(ctx, test_batch=args.test_batch)
        elif args.command == "batch":
            result = await run_batch_fetch(ctx, max_entities=args.limit)
        elif args.command == "exhaustive":
            result = await run_exhaustive_fetch(ctx, max_entities=args.limit)
        else:
            result = await run_full_sync(ctx, test_batch=args.test_batch)
    finally:
        await ctx.aclose()

    print(f"{args.command}: {result}")
    print(json.dumps(metrics.to_dict(), indent=2))
    return 0


async def run(args) -> int:
    try:
        if args.command == "init-db":
            return await cmd_init_db(args)
        if args.command == "status":
            return await cmd_status(args)
        return await cmd_phase(args)
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(
        description="Wiki mirror sync runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Log level")
    parser.add_argument("--plain-logs", action="store_true", help="Human-readable logs instead of JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("status", help="Show dirty queue counters")

    inventory_parser = subparsers.add_parser("inventory", help="Phase A: scan the remote collection")
    inventory_parser.add_argument(
        "--test-batch",
        action="store_true",
        help="Scan only the first page and skip deletion reconciliation",
    )

    for name, help_text in (
        ("batch", "Phase B: fetch dirty entities in aliased batches"),
        ("exhaustive", "Phase C: paginate truncated entities to completion"),
    ):
        phase_parser = subparsers.add_parser(name, help=help_text)
        phase_parser.add_argument("--limit", type=int, default=None, help="Maximum entities to process")

    full_parser = subparsers.add_parser("full", help="Run all phases")
    full_parser.add_argument("--test-batch", action="store_true", help="Single-page inventory scan")

    args = parser.parse_args()
    setup_logging(args.log_level, json_format=settings.log_json and not args.plain_logs)

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
