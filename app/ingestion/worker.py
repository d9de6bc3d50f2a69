"""
Batch ingestion worker.

Stores the already-parsed rows of an uploaded file as records, runs the
reconciliation engine over the batch and tracks the batch lifecycle
(PROCESSING -> COMPLETED or FAILED). Retry policy for reconciliation lives
here, not in the engine.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import structlog
from pydantic import BaseModel, Field, ValidationError, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import StorageError
from app.db.models.batch import Batch
from app.db.unit_of_work import UnitOfWork
from app.ingestion.config import IngestionConfig, get_ingestion_config
from app.ingestion.retry import retry_with_backoff
from app.reconciliation.config import ReconciliationConfig
from app.reconciliation.engine import ReconciliationEngine
from app.reconciliation.models import ReconciliationStats

logger = structlog.get_logger()

NO_RECORDS_MESSAGE = "No valid records found in file"


class RecordRow(BaseModel):
    """One parsed row of an uploaded file."""

    transaction_id: str = Field(..., min_length=1)
    reference_number: Optional[str] = None
    amount: Decimal
    date: datetime
    description: Optional[str] = None
    source_system: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _default_reference_number(self) -> "RecordRow":
        if not self.reference_number:
            self.reference_number = self.transaction_id
        return self

    def to_record_fields(self, batch_id: int) -> Dict[str, Any]:
        return {
            "batch_id": batch_id,
            "transaction_id": self.transaction_id,
            "reference_number": self.reference_number,
            "amount": self.amount,
            "date": self.date,
            "description": self.description,
            "source_system": self.source_system,
            "extra": self.metadata,
        }


RowInput = Union[RecordRow, Dict[str, Any]]


def parse_rows(rows: Sequence[RowInput]) -> Tuple[List[RecordRow], int]:
    """
    Validate raw rows, skipping the ones that do not parse.

    Returns:
        Tuple of (valid rows, number of rejected rows)
    """
    valid: List[RecordRow] = []
    rejected = 0
    for index, row in enumerate(rows):
        if isinstance(row, RecordRow):
            valid.append(row)
            continue
        try:
            valid.append(RecordRow.model_validate(row))
        except ValidationError as e:
            rejected += 1
            logger.warning("batch.row_rejected", row=index, errors=e.error_count())
    return valid, rejected


class BatchProcessor:
    """
    Drives one batch from stored rows to reconciled results.

    Usage:
        processor = BatchProcessor()
        batch = await processor.create_batch("bank_export.csv")
        stats = await processor.process_batch(batch.id, rows)
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        config: Optional[IngestionConfig] = None,
        reconciliation_config: Optional[ReconciliationConfig] = None,
    ):
        """
        Initialize the processor.

        Args:
            session: Optional database session for testing
            config: Worker configuration (defaults to application settings)
            reconciliation_config: Engine configuration (defaults to settings)
        """
        self._session = session
        self.config = config or get_ingestion_config()
        self.reconciliation_config = reconciliation_config

    async def create_batch(self, file_name: str) -> Batch:
        """Open a new batch in PROCESSING state."""
        async with UnitOfWork(self._session) as uow:
            batch = await uow.batches.create_batch(file_name)
            await uow.commit()

        logger.info("batch.created", batch_id=batch.id, file_name=file_name)
        return batch

    async def process_batch(
        self, batch_id: int, rows: Sequence[RowInput]
    ) -> ReconciliationStats:
        """
        Store a batch's rows and reconcile it.

        Args:
            batch_id: Batch opened with create_batch
            rows: Parsed rows of the uploaded file

        Returns:
            Reconciliation stats for the batch

        Raises:
            ValueError: If the batch does not exist or no row is valid
            StorageError: If reconciliation keeps failing after retries
        """
        log = logger.bind(batch_id=batch_id)
        log.info("batch.processing", rows=len(rows))

        async with UnitOfWork(self._session) as uow:
            if await uow.batches.get_by_id(batch_id) is None:
                log.error("batch.not_found")
                raise ValueError(f"Batch {batch_id} not found")

            try:
                valid_rows, rejected = parse_rows(rows)
                await uow.batches.update_progress(batch_id, total_records=len(rows))
                await uow.commit()
                if not valid_rows:
                    raise ValueError(NO_RECORDS_MESSAGE)

                created = await self._store_records(uow, batch_id, valid_rows)
                await uow.batches.update_progress(batch_id, processed_records=created)
                # Records must be durable before the engine looks at them
                await uow.commit()

                log.info("batch.records_stored", created=created, rejected=rejected)

                engine = ReconciliationEngine(uow.session, self.reconciliation_config)
                stats = await retry_with_backoff(
                    lambda: engine.reconcile_batch(batch_id),
                    self.config.retry,
                    operation_name="reconcile_batch",
                    retry_on=(StorageError,),
                )

                await uow.audit_logs.log_reconcile(
                    "Batch",
                    batch_id,
                    reconciliation_data=stats.model_dump(),
                    changed_by=self.config.actor,
                    source="WORKER",
                )
                await uow.batches.mark_completed(batch_id)
                await uow.commit()
            except Exception as e:
                await uow.rollback()
                await uow.batches.mark_failed(batch_id, str(e))
                await uow.commit()
                log.error("batch.failed", error=str(e), error_type=type(e).__name__)
                raise

        log.info("batch.completed", **stats.model_dump())
        return stats

    async def _store_records(
        self, uow: UnitOfWork, batch_id: int, rows: List[RecordRow]
    ) -> int:
        created = 0
        chunk_size = self.config.chunk_size
        for start in range(0, len(rows), chunk_size):
            chunk = rows[start : start + chunk_size]
            await uow.records.create_many(row.to_record_fields(batch_id) for row in chunk)
            created += len(chunk)
            logger.debug("batch.chunk_stored", batch_id=batch_id, records=len(chunk))
        return created
