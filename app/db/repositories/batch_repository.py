"""Batch repository tracking ingestion progress."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from sqlalchemy import desc, func, select

from app.db.models.batch import Batch, BatchStatus
from app.db.repository import BaseRepository


class BatchRepository(BaseRepository[Batch]):
    """Repository for Batch model."""

    async def create_batch(self, file_name: str) -> Batch:
        """Open a new batch in PROCESSING state."""
        return await self.create(
            file_name=file_name,
            status=BatchStatus.PROCESSING.value,
            started_at=datetime.now(timezone.utc),
        )

    async def update_progress(
        self,
        batch_id: int,
        total_records: Optional[int] = None,
        processed_records: Optional[int] = None,
    ) -> Optional[Batch]:
        update_data = {}
        if total_records is not None:
            update_data["total_records"] = total_records
        if processed_records is not None:
            update_data["processed_records"] = processed_records
        if not update_data:
            return await self.get_by_id(batch_id)
        return await self.update(batch_id, **update_data)

    async def mark_completed(self, batch_id: int) -> Optional[Batch]:
        return await self.update(
            batch_id,
            status=BatchStatus.COMPLETED.value,
            completed_at=datetime.now(timezone.utc),
            error_message=None,
        )

    async def mark_failed(self, batch_id: int, error_message: str) -> Optional[Batch]:
        """
        Mark a batch as failed.

        Args:
            batch_id: Batch ID
            error_message: Why ingestion or reconciliation failed

        Returns:
            Updated batch instance
        """
        return await self.update(
            batch_id,
            status=BatchStatus.FAILED.value,
            completed_at=datetime.now(timezone.utc),
            error_message=error_message,
        )

    async def get_by_status(
        self, status: BatchStatus, limit: Optional[int] = None
    ) -> List[Batch]:
        """
        Get batches in a given state, newest first.

        Args:
            status: Batch status
            limit: Maximum number to return

        Returns:
            List of batches
        """
        query = (
            select(self.model)
            .where(self.model.status == BatchStatus(status).value)
            .order_by(desc(self.model.created_at), desc(self.model.id))
        )
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_batches(
        self,
        status: Optional[BatchStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Batch], int]:
        """
        Get one page of batches, newest first.

        Args:
            status: Only batches in this state
            page: Page number, starting at 1
            limit: Batches per page

        Returns:
            Tuple of (batches, total matching batches)
        """
        return await self.paginate(
            page=page,
            limit=limit,
            order_by=[desc(self.model.created_at), desc(self.model.id)],
            status=BatchStatus(status).value if status is not None else None,
        )

    async def count_by_status(self) -> Dict[str, int]:
        """Number of batches in each state, zero for states with none."""
        result = await self.session.execute(
            select(self.model.status, func.count(self.model.id)).group_by(
                self.model.status
            )
        )
        counts = {status.value: 0 for status in BatchStatus}
        counts.update({status: count for status, count in result.all()})
        return counts

    async def completed_batch_ids(self) -> List[int]:
        result = await self.session.execute(
            select(self.model.id)
            .where(self.model.status == BatchStatus.COMPLETED.value)
            .order_by(self.model.id)
        )
        return list(result.scalars().all())
