"""Data models for reconciliation statistics and reviews."""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel, Field, model_validator

from app.db.models.match_result import ReconciliationStatus


class ReconciliationStats(BaseModel):
    """Outcome counts for one batch, or summed over several."""

    total: int = Field(default=0, ge=0, description="Records with an outcome")
    matched: int = Field(default=0, ge=0)
    partial: int = Field(default=0, ge=0)
    unmatched: int = Field(default=0, ge=0)
    duplicate: int = Field(default=0, ge=0)

    def add(self, status: ReconciliationStatus | str, count: int = 1) -> None:
        """Count ``count`` outcomes with the given status."""
        field = ReconciliationStatus(status).value.lower()
        setattr(self, field, getattr(self, field) + count)
        self.total += count

    def merge(self, other: ReconciliationStats) -> ReconciliationStats:
        """Return a new stats object with both sets of counts summed."""
        return ReconciliationStats(
            total=self.total + other.total,
            matched=self.matched + other.matched,
            partial=self.partial + other.partial,
            unmatched=self.unmatched + other.unmatched,
            duplicate=self.duplicate + other.duplicate,
        )

    @classmethod
    def combine(cls, stats: Iterable[ReconciliationStats]) -> ReconciliationStats:
        combined = cls()
        for item in stats:
            combined = combined.merge(item)
        return combined

    def is_consistent(self) -> bool:
        return self.matched + self.partial + self.unmatched + self.duplicate == self.total


class ResultReview(BaseModel):
    """Changes a reviewer makes to a match result."""

    status: Optional[ReconciliationStatus] = Field(
        default=None, description="Status override"
    )
    notes: Optional[str] = Field(default=None, max_length=1000, description="Reviewer notes")

    @model_validator(mode="after")
    def _require_change(self) -> ResultReview:
        if self.status is None and self.notes is None:
            raise ValueError("A review must change the status or add notes")
        return self


class BatchCounts(BaseModel):
    """Number of batches in each lifecycle state."""

    total: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class DashboardSummary(BaseModel):
    """Batch counts plus outcome counts summed over all completed batches."""

    batches: BatchCounts
    reconciliation: ReconciliationStats
