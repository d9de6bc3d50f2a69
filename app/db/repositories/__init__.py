"""Repository exports."""

from .batch_repository import BatchRepository
from .record_repository import RecordRepository
from .match_result_repository import MatchResultRepository
from .audit_log_repository import AuditLogRepository

__all__ = [
    "BatchRepository",
    "RecordRepository",
    "MatchResultRepository",
    "AuditLogRepository",
]
