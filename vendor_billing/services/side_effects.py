"""
Side-effect outbox.

Services return SideEffect intents instead of sending email or writing
audit rows inline. The API layer hands them to SideEffectDispatcher in a
background task after the business transaction has committed, so a slow
or failing notification never changes the outcome of a settlement or a
cashout decision.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from vendor_billing.database import Database
from vendor_billing.services.audit_service import AuditService
from vendor_billing.services.email_service import EmailService
from vendor_billing.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class SideEffectKind(str, Enum):
    AUDIT_LOG = "AUDIT_LOG"
    INVOICE_EMAIL = "INVOICE_EMAIL"
    SUBSCRIPTION_NOTIFICATION = "SUBSCRIPTION_NOTIFICATION"


@dataclass
class SideEffect:
    """A best-effort action to run after commit."""
    kind: SideEffectKind
    payload: Dict[str, Any] = field(default_factory=dict)


def audit_intent(
    action: str,
    entity_type: str,
    entity_id: Any,
    actor: Optional[Dict[str, Any]] = None,
    details: Optional[Dict[str, Any]] = None,
    description: Optional[str] = None,
) -> SideEffect:
    return SideEffect(
        kind=SideEffectKind.AUDIT_LOG,
        payload={
            "action": action,
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id else None,
            "actor": actor or {},
            "details": details or {},
            "description": description,
        },
    )


def _format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%d %b %Y")
    return str(value)


class SideEffectDispatcher:
    """Runs side-effect intents; logs and drops every failure."""

    def __init__(self, database: Database, email_service: EmailService):
        self.database = database
        self.email_service = email_service

    async def dispatch(self, effects: List[SideEffect]) -> None:
        for effect in effects:
            try:
                await self._run(effect)
            except Exception as e:
                logger.error(f"Side effect {effect.kind.value} failed: {e}")

    async def _run(self, effect: SideEffect) -> None:
        if effect.kind == SideEffectKind.AUDIT_LOG:
            await self._audit(effect.payload)
        elif effect.kind == SideEffectKind.SUBSCRIPTION_NOTIFICATION:
            await self._notify(effect.payload)
        elif effect.kind == SideEffectKind.INVOICE_EMAIL:
            await self._email(effect.payload)
        else:
            logger.warning(f"Unknown side effect kind: {effect.kind}")

    async def _audit(self, payload: Dict[str, Any]) -> None:
        async with self.database.session() as db:
            await AuditService(db).log(
                action=payload["action"],
                entity_type=payload["entity_type"],
                entity_id=payload.get("entity_id"),
                actor=payload.get("actor"),
                details=payload.get("details"),
                description=payload.get("description"),
            )

    async def _notify(self, payload: Dict[str, Any]) -> None:
        async with self.database.session() as db:
            await NotificationService(db).subscription_activated(
                vendor_id=payload["vendor_id"],
                plan_name=payload["plan_name"],
                expiry_date=payload["end_date"],
            )

    async def _email(self, payload: Dict[str, Any]) -> None:
        to_email = payload.get("to_email")
        if not to_email:
            logger.warning(f"No email address for invoice {payload.get('invoice_number')}; skipped")
            return
        if not self.email_service.is_configured:
            logger.warning("Email not configured; invoice email skipped")
            return

        sent = await asyncio.to_thread(
            self.email_service.send_subscription_invoice_email,
            to_email=to_email,
            company_name=payload.get("company_name") or "Vendor",
            invoice_number=payload["invoice_number"],
            plan_name=payload["plan_name"],
            amount=payload["amount"],
            discount_amount=payload["discount_amount"],
            net_amount=payload["net_amount"],
            offer_code=payload.get("offer_code"),
            transaction_id=payload["transaction_id"],
            start_date=_format_date(payload["start_date"]),
            end_date=_format_date(payload["end_date"]),
        )
        if not sent:
            logger.warning(f"Invoice email for {payload['invoice_number']} was not sent")
