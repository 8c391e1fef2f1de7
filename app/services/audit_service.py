from typing import Optional, Dict, Any, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog


class AuditService:
    """
    Append-only audit sink for order events.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_id: Optional[uuid.UUID] = None,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        entity_type: str = "ORDER",
        description: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: ORDER_CREATED, STATUS_UPDATED, ORDER_UPDATED, ...
            entity_id: ID of the affected entity
            user_id: Staff or customer id, or "system"
            details: JSON-serialisable context (previous/new status, note, ...)
            entity_type: Type of entity, ORDER by default
            description: Human-readable description

        Returns:
            The created AuditLog entry
        """
        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=str(user_id) if user_id is not None else None,
            details=details,
            description=description,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def get_entity_history(
        self,
        entity_id: uuid.UUID,
        entity_type: str = "ORDER",
    ) -> List[AuditLog]:
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.asc())
        )
        return list(result.scalars().all())
