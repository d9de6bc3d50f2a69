"""Manual review of match results.

Review is the only way a result changes after the engine wrote it. Every
review is paired with a REVIEW audit entry in the same transaction.
"""

from typing import List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.audit_log import AuditLog
from app.db.models.match_result import MatchResult, ReconciliationStatus
from app.db.repositories.audit_log_repository import AuditLogRepository
from app.db.repositories.match_result_repository import MatchResultRepository
from app.reconciliation.models import ResultReview

logger = structlog.get_logger(__name__)

RESULT_ENTITY = "MatchResult"


def _review_snapshot(result: MatchResult) -> dict:
    return {"status": result.status, "notes": result.notes}


class ReviewService:
    """Queries and manual review operations on match results."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.results = MatchResultRepository(MatchResult, session)
        self.audit_logs = AuditLogRepository(AuditLog, session)

    async def get_result(self, result_id: int) -> Optional[MatchResult]:
        return await self.results.get_by_id(result_id)

    async def list_results(
        self,
        batch_id: int,
        status: Optional[ReconciliationStatus] = None,
        manually_reviewed: Optional[bool] = None,
    ) -> List[MatchResult]:
        return await self.results.list_for_batch(
            batch_id, status=status, manually_reviewed=manually_reviewed
        )

    async def review_result(
        self,
        result_id: int,
        reviewer_id: str,
        review: ResultReview,
        source: str = "API",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[MatchResult]:
        """
        Apply a reviewer's changes to a result.

        Args:
            result_id: Result to review
            reviewer_id: Who reviewed it
            review: Status override and/or notes
            source: Entry point recorded in the audit trail
            ip_address: Client address, for API reviews
            user_agent: Client user agent, for API reviews

        Returns:
            Updated result, or None if no such result exists
        """
        result = await self.results.get_by_id(result_id)
        if result is None:
            return None

        old_value = _review_snapshot(result)
        updated = await self.results.update_review(
            result_id,
            reviewed_by=reviewer_id,
            status=review.status,
            notes=review.notes,
        )
        if updated is None:
            return None

        await self.audit_logs.log_review(
            RESULT_ENTITY,
            result_id,
            old_value=old_value,
            new_value=_review_snapshot(updated),
            changed_by=reviewer_id,
            source=source,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        logger.info(
            "review.applied",
            result_id=result_id,
            reviewed_by=reviewer_id,
            old_status=old_value["status"],
            new_status=updated.status,
        )
        return updated

    async def history(self, result_id: int) -> List[AuditLog]:
        """Audit entries of a result, oldest first."""
        return await self.audit_logs.history_for(RESULT_ENTITY, result_id)
