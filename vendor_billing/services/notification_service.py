"""
Vendor Notification Service

Writes in-app notifications for the vendor portal. Callers run it as a
best-effort side effect; a vendor without a linked user is skipped.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_billing.models.notification import Notification
from vendor_billing.models.vendor import Vendor


logger = logging.getLogger(__name__)


class NotificationService:
    """In-app notifications for vendors."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def subscription_activated(
        self,
        vendor_id: uuid.UUID,
        plan_name: str,
        expiry_date: datetime,
    ) -> Optional[Notification]:
        result = await self.db.execute(select(Vendor).where(Vendor.id == vendor_id))
        vendor = result.scalar_one_or_none()
        if not vendor or not vendor.user_id:
            logger.warning(f"No portal user for vendor {vendor_id}; notification skipped")
            return None

        formatted_date = expiry_date.strftime("%d %B %Y")
        notification = Notification(
            id=uuid.uuid4(),
            user_id=vendor.user_id,
            notification_type="PLAN_ACTIVATED",
            title="Subscription activated successfully",
            message=(
                f"Your {plan_name} plan has been activated and will be valid until "
                f"{formatted_date}. You now have access to all premium features."
            ),
            link="/vendor/subscriptions",
            is_read=False,
        )
        self.db.add(notification)
        await self.db.flush()

        logger.info(f"Subscription notification queued for vendor {vendor_id}")
        return notification
