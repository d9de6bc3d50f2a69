"""Record model for normalized transactions extracted from a batch."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from sqlalchemy import JSON, String, Text, DateTime, Numeric, Integer, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Record(Base):
    """
    A normalized transaction row belonging to exactly one batch.

    Records are written in bulk when a batch is ingested and are never
    mutated afterwards. ``transaction_id`` is intentionally not unique:
    repeated ids inside a batch are what duplicate detection looks for.
    """

    __tablename__ = "records"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Owning batch
    batch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True,
        comment="Batch this record was ingested with"
    )

    # Identification
    transaction_id: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True,
        comment="Transaction ID from the source file (not unique)"
    )
    reference_number: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True,
        comment="Reference number; defaults to transaction_id at ingestion"
    )

    # Transaction details
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2), nullable=False,
        comment="Transaction amount"
    )
    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True,
        comment="Transaction date"
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )
    source_system: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True,
        comment="System the row was exported from"
    )
    extra: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
        comment="Opaque key/value payload carried over from the source row"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    # Lookups used by the matching rules
    __table_args__ = (
        Index("idx_record_txn_amount", "transaction_id", "amount"),
        Index("idx_record_reference_amount", "reference_number", "amount"),
        Index("idx_record_batch_txn", "batch_id", "transaction_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Record(id={self.id}, batch_id={self.batch_id}, "
            f"transaction_id={self.transaction_id}, amount={self.amount})>"
        )
