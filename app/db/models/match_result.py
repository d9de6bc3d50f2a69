"""Match result model holding the reconciliation outcome of one record."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlalchemy import String, Text, DateTime, Numeric, Integer, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class ReconciliationStatus(str, Enum):
    """Outcome of reconciling a record."""

    MATCHED = "MATCHED"
    PARTIAL = "PARTIAL"
    UNMATCHED = "UNMATCHED"
    DUPLICATE = "DUPLICATE"


class MatchResult(Base):
    """
    Reconciliation outcome for exactly one record.

    The unique index on ``record_id`` is the last line of defence against a
    record receiving two outcomes when batches are reconciled concurrently.
    MATCHED and PARTIAL rows come in pairs pointing at each other through
    ``matched_with_record_id``.
    """

    __tablename__ = "match_results"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Foreign keys
    record_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("records.id", ondelete="CASCADE"), nullable=False, unique=True,
        comment="Record this outcome belongs to (one outcome per record)"
    )
    batch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True,
        comment="Batch of the record, denormalized for stats queries"
    )
    matched_with_record_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("records.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="Counterpart record for MATCHED / PARTIAL outcomes"
    )

    # Outcome
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True,
        comment="MATCHED, PARTIAL, UNMATCHED or DUPLICATE"
    )
    confidence: Mapped[float] = mapped_column(
        Numeric(precision=5, scale=4, asdecimal=False), nullable=False, default=1.0,
        comment="Match confidence score (0-1)"
    )
    rule_name: Mapped[str] = mapped_column(
        String(100), nullable=False,
        comment="Rule that produced the outcome, or UNMATCHED"
    )
    reason: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True,
        comment="Human readable explanation"
    )
    amount_variance: Mapped[float] = mapped_column(
        Numeric(precision=18, scale=2, asdecimal=False), nullable=False, default=0.0,
        comment="Absolute amount difference to the counterpart"
    )

    # Review
    manually_reviewed: Mapped[bool] = mapped_column(
        default=False, nullable=False,
        comment="Whether a person has reviewed this outcome"
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True,
        comment="User that reviewed this outcome"
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True,
        comment="Reviewer notes"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("idx_result_batch_status", "batch_id", "status"),
        Index("idx_result_status_reviewed", "status", "manually_reviewed"),
    )

    def __repr__(self) -> str:
        return (
            f"<MatchResult(id={self.id}, record_id={self.record_id}, "
            f"status={self.status}, matched_with={self.matched_with_record_id}, "
            f"rule={self.rule_name})>"
        )
