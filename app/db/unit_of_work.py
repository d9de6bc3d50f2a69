"""Unit of Work pattern for managing database transactions."""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import base as db_base
from app.db.models import AuditLog, Batch, MatchResult, Record
from app.db.repositories import (
    AuditLogRepository,
    BatchRepository,
    MatchResultRepository,
    RecordRepository,
)


class UnitOfWork:
    """
    Single entry point for the repositories of one database transaction.

    All repositories share the same session. When the unit of work owns the
    session it commits on a clean exit and rolls back on an exception.

    Usage:
        async with UnitOfWork() as uow:
            batch = await uow.batches.create_batch("bank_export.csv")
            await uow.records.create_many(rows)
            await uow.commit()
    """

    def __init__(self, session: Optional[AsyncSession] = None):
        """
        Initialize Unit of Work.

        Args:
            session: Optional existing session (useful for testing)
        """
        self._session = session
        self._owned_session = session is None

        # Repositories (initialized in __aenter__)
        self.batches: BatchRepository = None  # type: ignore
        self.records: RecordRepository = None  # type: ignore
        self.results: MatchResultRepository = None  # type: ignore
        self.audit_logs: AuditLogRepository = None  # type: ignore

    @property
    def session(self) -> AsyncSession:
        assert self._session is not None, "UnitOfWork used outside its context"
        return self._session

    async def __aenter__(self):
        if self._owned_session:
            # Looked up at call time so tests can swap the session factory
            self._session = db_base.AsyncSessionLocal()

        session = self.session
        self.batches = BatchRepository(Batch, session)
        self.records = RecordRepository(Record, session)
        self.results = MatchResultRepository(MatchResult, session)
        self.audit_logs = AuditLogRepository(AuditLog, session)

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            await self.rollback()
        elif self._owned_session:
            await self.commit()

        if self._owned_session and self._session:
            await self._session.close()

    async def commit(self):
        """Commit the current transaction."""
        if self._session:
            await self._session.commit()

    async def rollback(self):
        """Rollback the current transaction."""
        if self._session:
            await self._session.rollback()
