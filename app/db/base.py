"""Async engine, session factory and declarative base."""

from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import get_settings

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./reconciliation.db"


class Base(DeclarativeBase):
    """Declarative base shared by all models."""


def configure_sqlite(async_engine: AsyncEngine) -> None:
    """
    Make SQLite enforce foreign keys and honour SAVEPOINT / nested transactions.

    Foreign keys (and their ON DELETE actions) are off per connection unless
    the pragma is set. The sqlite3 driver also starts transactions lazily on
    its own, which breaks SAVEPOINT semantics; turning that off and emitting
    BEGIN ourselves keeps ``session.begin_nested()`` working the same way it
    does on PostgreSQL.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(async_engine.sync_engine, "begin")
    def _do_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")


def build_engine(db_url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    """Create an async engine, applying SQLite specific setup when needed."""
    async_engine = create_async_engine(db_url, echo=echo, future=True, **kwargs)
    if async_engine.dialect.name == "sqlite":
        configure_sqlite(async_engine)
    return async_engine


def build_session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


settings = get_settings()
engine = build_engine(settings.DATABASE_URL or DEFAULT_DATABASE_URL)
AsyncSessionLocal = build_session_factory(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session that commits on success."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
