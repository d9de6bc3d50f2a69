"""Audit log repository. Insert and read only."""

from datetime import datetime
from typing import Any, List, Optional, Tuple
from sqlalchemy import desc, select

from app.db.models.audit_log import AuditLog, AuditAction
from app.db.repository import BaseRepository


class AuditLogRepository(BaseRepository[AuditLog]):
    """Repository for AuditLog model.

    The audit trail is append-only, so this repository deliberately offers
    no update or delete.
    """

    async def update(self, id: int, **kwargs):  # type: ignore[override]
        raise PermissionError("Audit logs cannot be updated")

    async def log(
        self,
        entity_type: str,
        entity_id: int,
        action: AuditAction,
        changed_by: str,
        source: str,
        old_value: Optional[dict[str, Any]] = None,
        new_value: Optional[dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLog:
        """
        Append an audit entry.

        Args:
            entity_type: Kind of entity changed
            entity_id: ID of the entity
            action: What happened
            changed_by: User or component responsible
            source: Entry point (API, CLI, WORKER)
            old_value: Values before the change
            new_value: Values after the change
            ip_address: Client address, for API changes
            user_agent: Client user agent, for API changes

        Returns:
            Created audit entry
        """
        return await self.create(
            entity_type=entity_type,
            entity_id=entity_id,
            action=AuditAction(action).value,
            changed_by=changed_by,
            source=source,
            old_value=old_value,
            new_value=new_value,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def log_review(
        self,
        entity_type: str,
        entity_id: int,
        old_value: dict[str, Any],
        new_value: dict[str, Any],
        changed_by: str,
        source: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLog:
        return await self.log(
            entity_type,
            entity_id,
            AuditAction.REVIEW,
            changed_by,
            source,
            old_value=old_value,
            new_value=new_value,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def log_reconcile(
        self,
        entity_type: str,
        entity_id: int,
        reconciliation_data: dict[str, Any],
        changed_by: str,
        source: str,
    ) -> AuditLog:
        return await self.log(
            entity_type,
            entity_id,
            AuditAction.RECONCILE,
            changed_by,
            source,
            new_value=reconciliation_data,
        )

    async def history_for(self, entity_type: str, entity_id: int) -> List[AuditLog]:
        """Get every audit entry for an entity, oldest first."""
        query = (
            select(self.model)
            .where(
                self.model.entity_type == entity_type,
                self.model.entity_id == entity_id,
            )
            .order_by(self.model.timestamp, self.model.id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def search(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        changed_by: Optional[str] = None,
        action: Optional[AuditAction] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[AuditLog], int]:
        """
        Get one page of audit entries, newest first.

        All filters are optional; the date range is inclusive on both ends.

        Returns:
            Tuple of (entries, total matching entries)
        """
        return await self.paginate(
            page=page,
            limit=limit,
            order_by=[desc(self.model.timestamp), desc(self.model.id)],
            entity_type=entity_type,
            entity_id=entity_id,
            changed_by=changed_by,
            action=AuditAction(action).value if action is not None else None,
            timestamp__gte=start_date,
            timestamp__lte=end_date,
        )
