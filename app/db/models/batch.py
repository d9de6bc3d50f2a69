"""Batch model for uploaded files whose records get reconciled together."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlalchemy import String, Text, DateTime, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class BatchStatus(str, Enum):
    """Lifecycle of an ingested batch."""

    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Batch(Base):
    """
    One uploaded file's worth of transaction records.

    Owned by the ingestion layer; the reconciliation engine only ever
    receives a batch id.
    """

    __tablename__ = "batches"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    file_name: Mapped[str] = mapped_column(
        String(255), nullable=False,
        comment="Original name of the uploaded file"
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BatchStatus.PROCESSING.value, index=True,
        comment="Batch status (PROCESSING, COMPLETED, FAILED)"
    )

    # Progress
    total_records: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
        comment="Rows handed to ingestion"
    )
    processed_records: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
        comment="Rows stored as records"
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True,
        comment="Failure reason when status is FAILED"
    )

    # Timestamps
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("idx_batch_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Batch(id={self.id}, file_name={self.file_name}, "
            f"status={self.status}, processed={self.processed_records})>"
        )
