import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Integer, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from vendor_billing.database import Base
from vendor_billing.db_types import UUIDType


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"  # Superseded by a newer purchase
    EXPIRED = "EXPIRED"


class VendorPlanSubscription(Base):
    """
    A vendor's paid access to a plan for a fixed period.

    Exactly one payment activates each subscription.
    """
    __tablename__ = "vendor_plan_subscriptions"
    __table_args__ = (
        Index('ix_vendor_plan_subscriptions_vendor_status', 'vendor_id', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendor_plans.id"),
        nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SubscriptionStatus.ACTIVE.value,
        comment="ACTIVE, INACTIVE, EXPIRED"
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    plan_duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    deactivated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<VendorPlanSubscription(vendor={self.vendor_id}, status='{self.status}')>"
