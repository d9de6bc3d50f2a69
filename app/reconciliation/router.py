"""
Reconciliation API routes.

Provides endpoints to run the engine on a batch, read stats and results,
record manual reviews, browse batches and the audit trail, and get a
dashboard overview.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ResultConflictError, StorageError
from app.db.base import get_session
from app.db.models.audit_log import AuditAction, AuditLog
from app.db.models.batch import Batch, BatchStatus
from app.db.models.match_result import ReconciliationStatus
from app.db.repositories.audit_log_repository import AuditLogRepository
from app.db.repositories.batch_repository import BatchRepository
from app.reconciliation.engine import ReconciliationEngine
from app.reconciliation.models import DashboardSummary, ReconciliationStats, ResultReview
from app.reconciliation.review import ReviewService
from app.reconciliation.stats import StatsAggregator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


class MatchResultResponse(BaseModel):
    """A stored reconciliation outcome."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    record_id: int
    batch_id: int
    status: ReconciliationStatus
    matched_with_record_id: Optional[int] = None
    confidence: float
    rule_name: str
    reason: Optional[str] = None
    amount_variance: float
    manually_reviewed: bool
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AuditEntryResponse(BaseModel):
    """One audit trail entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    entity_type: str
    entity_id: int
    action: str
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    changed_by: str
    source: str
    timestamp: datetime


class AuditPage(BaseModel):
    """One page of audit entries."""

    items: List[AuditEntryResponse]
    total: int
    page: int
    total_pages: int


class BatchResponse(BaseModel):
    """An uploaded batch and its ingestion progress."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    file_name: str
    status: BatchStatus
    total_records: int
    processed_records: int
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class BatchPage(BaseModel):
    """One page of batches."""

    items: List[BatchResponse]
    total: int
    page: int
    total_pages: int


class DashboardResponse(DashboardSummary):
    """Dashboard overview with the most recent batches."""

    recent_batches: List[BatchResponse]


class BatchRunResponse(BaseModel):
    """Response for a reconciliation run."""

    batch_id: int
    stats: ReconciliationStats
    message: str


class SummaryResponse(BaseModel):
    """Summed stats over several batches."""

    batch_ids: List[int] = Field(..., description="Batches included in the summary")
    stats: ReconciliationStats


async def _require_batch(session: AsyncSession, batch_id: int) -> Batch:
    batch = await BatchRepository(Batch, session).get_by_id(batch_id)
    if batch is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Batch {batch_id} not found",
        )
    return batch


def _total_pages(total: int, limit: int) -> int:
    return (total + limit - 1) // limit


@router.post("/batches/{batch_id}/run", response_model=BatchRunResponse)
async def run_reconciliation(
    batch_id: int,
    session: AsyncSession = Depends(get_session),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
):
    """
    Reconcile a batch now.

    Already resolved records are skipped, so running a batch twice is safe.
    """
    await _require_batch(session, batch_id)

    try:
        stats = await ReconciliationEngine(session).reconcile_batch(batch_id)
    except StorageError as e:
        logger.error(f"Reconciliation of batch {batch_id} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Reconciliation failed: {str(e)}",
        )
    except ResultConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    await AuditLogRepository(AuditLog, session).log_reconcile(
        "Batch",
        batch_id,
        reconciliation_data=stats.model_dump(),
        changed_by=x_user_id or "system",
        source="API",
    )

    return BatchRunResponse(
        batch_id=batch_id,
        stats=stats,
        message=f"Reconciled {stats.total} record(s)",
    )


@router.get("/batches/{batch_id}/stats", response_model=ReconciliationStats)
async def get_batch_stats(batch_id: int, session: AsyncSession = Depends(get_session)):
    """Live outcome counts for a batch, including review overrides."""
    await _require_batch(session, batch_id)
    return await StatsAggregator(session).stats_for_batch(batch_id)


@router.get("/batches/{batch_id}/results", response_model=List[MatchResultResponse])
async def list_batch_results(
    batch_id: int,
    result_status: Optional[ReconciliationStatus] = Query(default=None, alias="status"),
    manually_reviewed: Optional[bool] = None,
    session: AsyncSession = Depends(get_session),
):
    """
    List a batch's outcomes, newest first.

    Args:
        batch_id: Batch ID
        result_status: Only outcomes with this status
        manually_reviewed: Only reviewed or unreviewed outcomes
    """
    await _require_batch(session, batch_id)
    return await ReviewService(session).list_results(
        batch_id, status=result_status, manually_reviewed=manually_reviewed
    )


@router.get("/results/{result_id}", response_model=MatchResultResponse)
async def get_result(result_id: int, session: AsyncSession = Depends(get_session)):
    result = await ReviewService(session).get_result(result_id)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Result {result_id} not found",
        )
    return result


@router.patch("/results/{result_id}", response_model=MatchResultResponse)
async def review_result(
    result_id: int,
    review: ResultReview,
    request: Request,
    x_user_id: str = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_session),
):
    """
    Record a manual review.

    The body must carry a status override, notes, or both. The change and
    the previous values are written to the audit trail.
    """
    result = await ReviewService(session).review_result(
        result_id,
        reviewer_id=x_user_id,
        review=review,
        source="API",
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Result {result_id} not found",
        )
    return result


@router.get("/results/{result_id}/history", response_model=List[AuditEntryResponse])
async def get_result_history(result_id: int, session: AsyncSession = Depends(get_session)):
    service = ReviewService(session)
    if await service.get_result(result_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Result {result_id} not found",
        )
    return await service.history(result_id)


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(
    batch_ids: List[int] = Query(..., description="Batches to sum over"),
    session: AsyncSession = Depends(get_session),
):
    """Sum of the per-batch stats over the requested batches."""
    unique_ids = list(dict.fromkeys(batch_ids))
    stats = await StatsAggregator(session).stats_for_batches(unique_ids)
    return SummaryResponse(batch_ids=unique_ids, stats=stats)


@router.get("/batches", response_model=BatchPage)
async def list_batches(
    batch_status: Optional[BatchStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    """List uploaded batches, newest first."""
    batches, total = await BatchRepository(Batch, session).list_batches(
        status=batch_status, page=page, limit=limit
    )
    return BatchPage(
        items=[BatchResponse.model_validate(batch) for batch in batches],
        total=total,
        page=page,
        total_pages=_total_pages(total, limit),
    )


@router.get("/batches/{batch_id}", response_model=BatchResponse)
async def get_batch(batch_id: int, session: AsyncSession = Depends(get_session)):
    """Status, progress counters and failure reason of one batch."""
    return await _require_batch(session, batch_id)


@router.get("/audit", response_model=AuditPage)
async def search_audit_log(
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    changed_by: Optional[str] = None,
    action: Optional[AuditAction] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_session),
):
    """
    Search the audit trail, newest first.

    Args:
        entity_type: e.g. ``MatchResult`` or ``Batch``
        entity_id: Entity ID
        changed_by: User or component that made the change
        action: Audit action
        start_date: Earliest timestamp (inclusive)
        end_date: Latest timestamp (inclusive)
    """
    entries, total = await AuditLogRepository(AuditLog, session).search(
        entity_type=entity_type,
        entity_id=entity_id,
        changed_by=changed_by,
        action=action,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return AuditPage(
        items=[AuditEntryResponse.model_validate(entry) for entry in entries],
        total=total,
        page=page,
        total_pages=_total_pages(total, limit),
    )


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(session: AsyncSession = Depends(get_session)):
    """Batch counts by state, stats over completed batches and recent batches."""
    summary = await StatsAggregator(session).dashboard()
    recent, _ = await BatchRepository(Batch, session).list_batches(limit=10)
    return DashboardResponse(
        **summary.model_dump(),
        recent_batches=[BatchResponse.model_validate(batch) for batch in recent],
    )
