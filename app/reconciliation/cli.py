"""
Reconciliation CLI commands.

Provides a command-line interface for running reconciliation on a batch
and viewing stats and results.
"""

import asyncio
import sys
from typing import List, Optional

import structlog

from app.core.config import get_settings
from app.core.exceptions import ReconciliationError
from app.core.logging import configure_logging
from app.db.models.batch import BatchStatus
from app.db.models.match_result import ReconciliationStatus
from app.db.unit_of_work import UnitOfWork
from app.reconciliation.engine import ReconciliationEngine
from app.reconciliation.models import ReconciliationStats
from app.reconciliation.review import ReviewService
from app.reconciliation.stats import StatsAggregator

logger = structlog.get_logger()


def print_stats(stats: ReconciliationStats, title: str):
    """Pretty print reconciliation stats."""
    print(f"\n=== {title} ===\n")
    print(f"Total:     {stats.total}")
    print(f"Matched:   {stats.matched}")
    print(f"Partial:   {stats.partial}")
    print(f"Unmatched: {stats.unmatched}")
    print(f"Duplicate: {stats.duplicate}")
    if stats.total:
        resolved = stats.matched + stats.partial
        print(f"\nMatch Rate: {resolved / stats.total:.1%}")
    print()


async def reconcile_command(batch_id: int):
    """Run reconciliation for one batch."""
    print(f"Reconciling batch {batch_id}...")
    async with UnitOfWork() as uow:
        try:
            stats = await ReconciliationEngine(uow.session).reconcile_batch(batch_id)
        except ReconciliationError as e:
            logger.error("cli.reconcile_failed", batch_id=batch_id, error=str(e))
            print(f"\nReconciliation failed: {str(e)}")
            return 1

        await uow.audit_logs.log_reconcile(
            "Batch",
            batch_id,
            reconciliation_data=stats.model_dump(),
            changed_by="cli",
            source="CLI",
        )

    print_stats(stats, f"Batch {batch_id} Reconciled")
    return 0


async def stats_command(batch_id: int):
    """Show live stats for one batch."""
    async with UnitOfWork() as uow:
        stats = await StatsAggregator(uow.session).stats_for_batch(batch_id)
    print_stats(stats, f"Batch {batch_id} Stats")
    return 0


async def summary_command(batch_ids: List[int]):
    """Show stats summed over several batches."""
    async with UnitOfWork() as uow:
        stats = await StatsAggregator(uow.session).stats_for_batches(batch_ids)
    print_stats(stats, f"Summary ({len(set(batch_ids))} batches)")
    return 0


async def results_command(batch_id: int, status: Optional[ReconciliationStatus] = None):
    """List the outcomes of one batch."""
    async with UnitOfWork() as uow:
        results = await ReviewService(uow.session).list_results(batch_id, status=status)

    print(f"\n=== Batch {batch_id} Results ({len(results)}) ===\n")
    for result in results:
        counterpart = result.matched_with_record_id or "-"
        reviewed = " [reviewed]" if result.manually_reviewed else ""
        print(
            f"#{result.id} record={result.record_id} {result.status} "
            f"with={counterpart} confidence={result.confidence:.2f}{reviewed}"
        )
        print(f"    {result.reason}")
    print()
    return 0


async def batches_command(status: BatchStatus):
    """List batches in a given state."""
    async with UnitOfWork() as uow:
        batches = await uow.batches.get_by_status(status, limit=20)

    print(f"\n=== {status.value} Batches ===\n")
    for batch in batches:
        print(
            f"#{batch.id} {batch.file_name}: "
            f"{batch.processed_records}/{batch.total_records} records"
        )
        if batch.error_message:
            print(f"    Error: {batch.error_message}")
    print()
    return 0


def print_usage():
    print("Usage: python -m app.reconciliation.cli <command> [options]")
    print("\nCommands:")
    print("  reconcile <batch_id>          Reconcile a batch")
    print("  stats <batch_id>              Show live stats for a batch")
    print("  summary <batch_id> [...]      Show stats summed over batches")
    print("  results <batch_id> [status]   List a batch's results")
    print("  batches [status]              List batches (default PROCESSING)")
    print("\nExamples:")
    print("  python -m app.reconciliation.cli reconcile 12")
    print("  python -m app.reconciliation.cli summary 12 13 14")
    print("  python -m app.reconciliation.cli results 12 UNMATCHED")
    print("  python -m app.reconciliation.cli batches FAILED")


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print_usage()
        return 1

    settings = get_settings()
    configure_logging(settings.ENV, settings.DEBUG)

    command, params = args[0], args[1:]

    try:
        if command == "reconcile" and len(params) == 1:
            return asyncio.run(reconcile_command(int(params[0])))
        elif command == "stats" and len(params) == 1:
            return asyncio.run(stats_command(int(params[0])))
        elif command == "summary" and params:
            return asyncio.run(summary_command([int(p) for p in params]))
        elif command == "results" and params:
            status = ReconciliationStatus(params[1].upper()) if len(params) > 1 else None
            return asyncio.run(results_command(int(params[0]), status))
        elif command == "batches":
            status = BatchStatus(params[0].upper()) if params else BatchStatus.PROCESSING
            return asyncio.run(batches_command(status))
        else:
            print(f"Unknown command or missing arguments: {' '.join(args)}")
            print_usage()
            return 1
    except ValueError as e:
        print(f"Invalid argument: {str(e)}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
