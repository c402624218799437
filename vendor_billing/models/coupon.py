"""
Plan coupons and their usage records.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from vendor_billing.database import Base
from vendor_billing.db_types import UUIDType, MoneyType
from vendor_billing.core.scope import Scope, parse_scope


class DiscountType(str, Enum):
    """Discount type enumeration."""
    PERCENT = "PERCENT"  # e.g., 10% off
    FLAT = "FLAT"  # e.g., ₹100 off


class PlanCoupon(Base):
    """
    Promotional code redeemable against a plan purchase.
    """
    __tablename__ = "vendor_plan_coupons"
    __table_args__ = (
        CheckConstraint(
            "max_uses = 0 OR used_count <= max_uses",
            name="ck_vendor_plan_coupons_usage_cap",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Uppercase code, A-Z 0-9 _ -"
    )
    discount_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DiscountType.PERCENT.value,
        comment="PERCENT, FLAT"
    )
    value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    # Scope: NULL means global
    plan_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Plan id or plan name; NULL = any plan"
    )
    vendor_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Vendor id, public code or email; NULL = any vendor"
    )

    max_uses: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="0 = unlimited"
    )
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Expiry (null = never expires)"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def vendor_scope(self) -> Scope:
        return parse_scope(self.vendor_id)

    @property
    def plan_scope(self) -> Scope:
        return parse_scope(self.plan_id)

    @property
    def is_exhausted(self) -> bool:
        return bool(self.max_uses and self.max_uses > 0 and (self.used_count or 0) >= self.max_uses)

    def __repr__(self) -> str:
        return f"<PlanCoupon(code='{self.code}', type='{self.discount_type}', value={self.value})>"


class CouponUsage(Base):
    """
    One row per settled payment that redeemed a coupon.
    """
    __tablename__ = "vendor_coupon_usages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendor_plan_coupons.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendor_payments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    plan_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Actual discount applied"
    )
    net_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
