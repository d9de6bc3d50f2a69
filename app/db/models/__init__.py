"""Database models for the reconciliation service."""

from .batch import Batch, BatchStatus
from .record import Record
from .match_result import MatchResult, ReconciliationStatus
from .audit_log import AuditLog, AuditAction

__all__ = [
    "Batch",
    "BatchStatus",
    "Record",
    "MatchResult",
    "ReconciliationStatus",
    "AuditLog",
    "AuditAction",
]
