"""Per-batch and cross-batch reconciliation statistics."""

from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.batch import Batch
from app.db.models.match_result import MatchResult
from app.db.repositories.batch_repository import BatchRepository
from app.db.repositories.match_result_repository import MatchResultRepository
from app.reconciliation.models import BatchCounts, DashboardSummary, ReconciliationStats


class StatsAggregator:
    """
    Reads outcome counts from the result store.

    Counts always come from the persisted results, never from a cached engine
    run, so status overrides made during review show up immediately.
    """

    def __init__(self, session: AsyncSession):
        self.results = MatchResultRepository(MatchResult, session)
        self.batches = BatchRepository(Batch, session)

    async def stats_for_batch(self, batch_id: int) -> ReconciliationStats:
        """
        Count a batch's outcomes by status.

        Args:
            batch_id: Batch ID

        Returns:
            Stats whose per-status counts add up to ``total``
        """
        stats = ReconciliationStats()
        for status, count in (await self.results.count_by_status(batch_id)).items():
            stats.add(status, count)
        return stats

    async def stats_for_batches(self, batch_ids: Iterable[int]) -> ReconciliationStats:
        """Sum of the per-batch stats over the given batches (each counted once)."""
        per_batch = [
            await self.stats_for_batch(batch_id) for batch_id in dict.fromkeys(batch_ids)
        ]
        return ReconciliationStats.combine(per_batch)

    async def dashboard(self) -> DashboardSummary:
        """
        Overview across every batch.

        Outcome counts only include COMPLETED batches; batches still
        processing or failed part way are left out.
        """
        by_status = await self.batches.count_by_status()
        counts = BatchCounts(
            total=sum(by_status.values()),
            **{status.lower(): count for status, count in by_status.items()},
        )
        completed = await self.batches.completed_batch_ids()
        return DashboardSummary(
            batches=counts,
            reconciliation=await self.stats_for_batches(completed),
        )
