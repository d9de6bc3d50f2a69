import os
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Ensure project root is on sys.path so `import app` works when running pytest from root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Force test database URL before any app imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("ENV", "development")

from app.db import base as db_base  # noqa: E402
from app.db.base import Base, build_engine, build_session_factory  # noqa: E402
from app.db.models import Batch, MatchResult, Record  # noqa: E402
from app.db.repositories import (  # noqa: E402
    BatchRepository,
    MatchResultRepository,
    RecordRepository,
)
from app.reconciliation.config import ReconciliationConfig  # noqa: E402


@pytest_asyncio.fixture(scope="function")
async def test_db(tmp_path, monkeypatch):
    """
    Provide a session factory over a fresh database for each test.

    A file database (rather than ``:memory:``) gives every session its own
    connection, the same way a real deployment does.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'reconciliation.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = build_session_factory(engine)

    # Patch app.db.base so UnitOfWork and get_session use the test database
    monkeypatch.setattr(db_base, "engine", engine)
    monkeypatch.setattr(db_base, "AsyncSessionLocal", session_factory)

    yield session_factory

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_db):
    """Get a database session for a test."""
    async with test_db() as session:
        yield session
        await session.rollback()


@pytest.fixture
def config():
    """Engine configuration with the default rule tolerances."""
    return ReconciliationConfig()


class Seeder:
    """Creates batches and records for a test through the repositories."""

    def __init__(self, session):
        self.session = session
        self.batches = BatchRepository(Batch, session)
        self.records = RecordRepository(Record, session)
        self.results = MatchResultRepository(MatchResult, session)

    async def batch(self, file_name: str = "upload.csv") -> Batch:
        return await self.batches.create_batch(file_name)

    async def record(
        self,
        batch: Batch,
        transaction_id: str,
        amount: str,
        reference_number: Optional[str] = None,
        **fields,
    ) -> Record:
        return await self.records.create(
            batch_id=batch.id,
            transaction_id=transaction_id,
            reference_number=reference_number or transaction_id,
            amount=Decimal(amount),
            date=fields.pop("date", datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)),
            **fields,
        )

    async def commit(self):
        await self.session.commit()


@pytest.fixture
def seed(db_session):
    """Helper for seeding batches and records in the test session."""
    return Seeder(db_session)


@pytest_asyncio.fixture
async def client(test_db):
    """HTTP client talking to the app in-process."""
    from app.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
