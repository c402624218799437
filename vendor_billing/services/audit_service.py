from typing import Optional, Dict, Any, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_billing.models.audit_log import AuditLog


class AuditService:
    """
    Audit service for payments, coupon administration and cashout decisions.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        actor: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: The action performed (PAYMENT_COMPLETED, COUPON_CREATED, etc.)
            entity_type: Table of the affected entity
            entity_id: ID of the affected entity
            actor: actor_id / actor_role / actor_email of whoever acted
            details: Action-specific values
            description: Human-readable description
            ip_address: Client IP address

        Returns:
            The created AuditLog entry
        """
        actor = actor or {}
        merged_details = dict(details or {})
        if actor.get("actor_email"):
            merged_details.setdefault("actor_email", actor["actor_email"])

        audit_log = AuditLog(
            id=uuid.uuid4(),
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id else None,
            actor_id=actor.get("actor_id"),
            actor_role=actor.get("actor_role"),
            details=merged_details or None,
            description=description,
            ip_address=ip_address,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def list_for_entity(self, entity_type: str, entity_id: str) -> List[AuditLog]:
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
            .order_by(AuditLog.created_at.asc())
        )
        return list(result.scalars().all())
