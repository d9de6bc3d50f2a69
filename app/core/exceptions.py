"""Exceptions raised by the reconciliation core."""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class ResultConflictError(ReconciliationError):
    """A match result already exists for the record.

    During ordinary re-runs this means "already resolved"; the engine
    recovers from it. Anywhere else it points at concurrent writers.
    """

    def __init__(self, record_id: int, message: Optional[str] = None):
        self.record_id = record_id
        super().__init__(message or f"Record {record_id} already has a match result")


class StorageError(ReconciliationError):
    """Reading or writing the record / result stores failed.

    Aborts the current batch run; retrying is up to the caller.
    """

    def __init__(self, message: str, batch_id: Optional[int] = None):
        self.batch_id = batch_id
        super().__init__(message)


class InvalidRuleError(ReconciliationError):
    """An active rule has no handler in the engine."""

    def __init__(self, rule_name: str):
        self.rule_name = rule_name
        super().__init__(f"No handler registered for reconciliation rule '{rule_name}'")
