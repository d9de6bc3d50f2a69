"""
Batch ingestion module.

Stores already-parsed upload rows as records and hands the batch to the
reconciliation engine, retrying transient storage failures.
"""

from app.ingestion.config import IngestionConfig, RetryConfig, get_ingestion_config
from app.ingestion.retry import retry_with_backoff
from app.ingestion.worker import BatchProcessor, RecordRow

__all__ = [
    "IngestionConfig",
    "RetryConfig",
    "get_ingestion_config",
    "retry_with_backoff",
    "BatchProcessor",
    "RecordRow",
]
