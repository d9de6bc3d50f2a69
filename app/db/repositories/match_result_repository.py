"""Match result repository enforcing one outcome per record."""

from datetime import datetime, timezone
from typing import Optional, List
from sqlalchemy import select, update, func, desc
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ResultConflictError
from app.db.models.match_result import MatchResult, ReconciliationStatus
from app.db.repository import BaseRepository


class MatchResultRepository(BaseRepository[MatchResult]):
    """Repository for MatchResult model with specialized queries."""

    async def get_by_record_id(self, record_id: int) -> Optional[MatchResult]:
        """Get the outcome of a record, if it has one."""
        return await self.get_by_field("record_id", record_id)

    async def create_result(
        self,
        record_id: int,
        batch_id: int,
        status: ReconciliationStatus,
        rule_name: str,
        reason: str,
        confidence: float = 1.0,
        matched_with_record_id: Optional[int] = None,
        amount_variance: float = 0.0,
    ) -> MatchResult:
        """
        Create the outcome of a record.

        The insert runs inside a SAVEPOINT so a unique violation on
        ``record_id`` leaves the surrounding transaction usable.

        Args:
            record_id: Record the outcome belongs to
            batch_id: Batch of that record
            status: Reconciliation status
            rule_name: Rule that produced the outcome
            reason: Human readable explanation
            confidence: Confidence score (0-1)
            matched_with_record_id: Counterpart record, if any
            amount_variance: Absolute amount difference to the counterpart

        Returns:
            Created result

        Raises:
            ResultConflictError: If the record already has an outcome
        """
        instance = self.model(
            record_id=record_id,
            batch_id=batch_id,
            status=ReconciliationStatus(status).value,
            rule_name=rule_name,
            reason=reason,
            confidence=confidence,
            matched_with_record_id=matched_with_record_id,
            amount_variance=amount_variance,
            manually_reviewed=False,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(instance)
        except IntegrityError:
            if await self.get_by_record_id(record_id) is not None:
                raise ResultConflictError(record_id)
            raise
        return instance

    async def relink(
        self,
        result: MatchResult,
        status: ReconciliationStatus,
        matched_with_record_id: int,
        rule_name: str,
        reason: str,
        confidence: float,
        amount_variance: float = 0.0,
    ) -> MatchResult:
        """
        Turn an engine-assigned UNMATCHED outcome into a link.

        The update only applies while the row is still an unreviewed
        UNMATCHED outcome, so two batches cannot claim the same record.

        Raises:
            ResultConflictError: If the row changed since it was read
        """
        outcome = await self.session.execute(
            update(self.model)
            .where(
                self.model.id == result.id,
                self.model.status == ReconciliationStatus.UNMATCHED.value,
                self.model.manually_reviewed.is_(False),
            )
            .values(
                status=ReconciliationStatus(status).value,
                matched_with_record_id=matched_with_record_id,
                rule_name=rule_name,
                reason=reason,
                confidence=confidence,
                amount_variance=amount_variance,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if outcome.rowcount != 1:  # type: ignore[attr-defined]
            raise ResultConflictError(
                result.record_id,
                f"Record {result.record_id} was resolved by another run",
            )
        await self.session.refresh(result)
        return result

    async def update_review(
        self,
        result_id: int,
        reviewed_by: str,
        status: Optional[ReconciliationStatus] = None,
        notes: Optional[str] = None,
    ) -> Optional[MatchResult]:
        """
        Record a manual review on an outcome.

        Args:
            result_id: Result ID
            reviewed_by: Reviewer identifier
            status: Optional status override
            notes: Optional reviewer notes

        Returns:
            Updated result, or None if it does not exist
        """
        update_data: dict = {
            "manually_reviewed": True,
            "reviewed_by": reviewed_by,
            "reviewed_at": datetime.now(timezone.utc),
        }
        if status is not None:
            update_data["status"] = ReconciliationStatus(status).value
        if notes is not None:
            update_data["notes"] = notes

        return await self.update(result_id, **update_data)

    async def list_for_batch(
        self,
        batch_id: int,
        status: Optional[ReconciliationStatus] = None,
        manually_reviewed: Optional[bool] = None,
    ) -> List[MatchResult]:
        """
        Get the outcomes of a batch, newest first.

        Args:
            batch_id: Batch ID
            status: Only outcomes with this status
            manually_reviewed: Only reviewed (True) or unreviewed (False) outcomes

        Returns:
            List of results
        """
        query = select(self.model).where(self.model.batch_id == batch_id)
        if status is not None:
            query = query.where(self.model.status == ReconciliationStatus(status).value)
        if manually_reviewed is not None:
            query = query.where(self.model.manually_reviewed.is_(manually_reviewed))
        query = query.order_by(desc(self.model.created_at), desc(self.model.id))

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_by_status(self, batch_id: int) -> dict[str, int]:
        """
        Count a batch's outcomes per status.

        Returns:
            Mapping of status value to count (statuses without rows are absent)
        """
        query = (
            select(self.model.status, func.count(self.model.id))
            .where(self.model.batch_id == batch_id)
            .group_by(self.model.status)
        )
        result = await self.session.execute(query)
        return {status: count for status, count in result.all()}
