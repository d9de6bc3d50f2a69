"""Append-only audit trail of changes made to reconciliation data."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from sqlalchemy import JSON, String, DateTime, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    RECONCILE = "RECONCILE"
    REVIEW = "REVIEW"


class AuditLog(Base):
    """
    Who changed what, and from which value to which.

    Rows are only ever inserted; the repository exposes no update or delete.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    entity_type: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True,
        comment="Kind of entity changed (e.g. 'MatchResult', 'Batch')"
    )
    entity_id: Mapped[int] = mapped_column(
        Integer, nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True
    )
    old_value: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    new_value: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    changed_by: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True,
        comment="User or component that made the change"
    )
    source: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="Entry point of the change (API, CLI, WORKER)"
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True
    )

    __table_args__ = (
        Index("idx_audit_entity_timestamp", "entity_type", "entity_id", "timestamp"),
        Index("idx_audit_changed_by_timestamp", "changed_by", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, action={self.action}, "
            f"entity={self.entity_type}:{self.entity_id}, by={self.changed_by})>"
        )
