"""Record repository with the lookups used by the matching rules."""

from decimal import Decimal
from typing import AsyncIterator, List
from sqlalchemy import select

from app.db.models.record import Record
from app.db.repository import BaseRepository


class RecordRepository(BaseRepository[Record]):
    """Repository for Record model with reconciliation queries.

    Every candidate lookup is ordered by id and capped, so results are
    deterministic and the cost of a single lookup is bounded.
    """

    async def records_for_batch(self, batch_id: int) -> List[Record]:
        """Get all records of a batch in ingestion order."""
        query = (
            select(self.model)
            .where(self.model.batch_id == batch_id)
            .order_by(self.model.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_for_batch(self, batch_id: int) -> int:
        return await self.count(batch_id=batch_id)

    async def iter_batch_chunks(
        self, batch_id: int, chunk_size: int
    ) -> AsyncIterator[List[Record]]:
        """
        Yield a batch's records in id order, ``chunk_size`` at a time.

        Uses keyset pagination (``id > last_id``) so only one chunk is held
        in memory and rows written while iterating do not shift the pages.

        Args:
            batch_id: Batch to page through
            chunk_size: Maximum records per chunk

        Yields:
            Non-empty lists of records
        """
        last_id = 0
        while True:
            query = (
                select(self.model)
                .where(self.model.batch_id == batch_id, self.model.id > last_id)
                .order_by(self.model.id)
                .limit(chunk_size)
            )
            result = await self.session.execute(query)
            chunk = list(result.scalars().all())
            if not chunk:
                return
            yield chunk
            last_id = chunk[-1].id

    async def find_by_transaction_id_and_amount(
        self,
        transaction_id: str,
        amount: Decimal,
        exclude_batch_id: int,
        limit: int = 10,
    ) -> List[Record]:
        """
        Find records from other batches with the same transaction id and amount.

        Args:
            transaction_id: Transaction ID to look for
            amount: Exact amount to look for
            exclude_batch_id: Batch whose records are not candidates
            limit: Maximum number of candidates

        Returns:
            Candidate records, oldest first
        """
        query = (
            select(self.model)
            .where(
                self.model.transaction_id == transaction_id,
                self.model.amount == amount,
                self.model.batch_id != exclude_batch_id,
            )
            .order_by(self.model.id)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def find_by_reference_number(
        self, reference_number: str, exclude_batch_id: int, limit: int = 10
    ) -> List[Record]:
        """Find records from other batches sharing a reference number."""
        query = (
            select(self.model)
            .where(
                self.model.reference_number == reference_number,
                self.model.batch_id != exclude_batch_id,
            )
            .order_by(self.model.id)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def find_duplicates_in_batch(
        self,
        transaction_id: str,
        batch_id: int,
        exclude_record_id: int,
        limit: int = 5,
    ) -> List[Record]:
        """
        Find other records of the same batch carrying the same transaction id.

        Args:
            transaction_id: Transaction ID to look for
            batch_id: Batch to search in
            exclude_record_id: The record being evaluated
            limit: Maximum number of siblings returned

        Returns:
            Sibling records, oldest first
        """
        query = (
            select(self.model)
            .where(
                self.model.transaction_id == transaction_id,
                self.model.batch_id == batch_id,
                self.model.id != exclude_record_id,
            )
            .order_by(self.model.id)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
