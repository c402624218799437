"""
Referral program models.

A referrer vendor shares its referral code; a referred vendor that buys
its first paid plan gets a discount, and the referrer earns a reward in
its wallet.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from vendor_billing.database import Base
from vendor_billing.db_types import UUIDType, JSONType, MoneyType


class ReferralStatus(str, Enum):
    PENDING = "PENDING"
    QUALIFIED = "QUALIFIED"
    REWARDED = "REWARDED"
    REJECTED = "REJECTED"

    @classmethod
    def active(cls) -> list:
        return [cls.PENDING.value, cls.QUALIFIED.value, cls.REWARDED.value]


class ReferralProgramSettings(Base):
    """Program-wide switches; a single row keyed GLOBAL."""
    __tablename__ = "referral_program_settings"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    config_key: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, default="GLOBAL")
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    first_paid_plan_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    min_plan_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    min_cashout_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("500"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class ReferralPlanRule(Base):
    """
    Discount for the referred vendor and reward for the referrer, per plan.
    """
    __tablename__ = "referral_plan_rules"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendor_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    discount_type: Mapped[str] = mapped_column(String(20), nullable=False, default="PERCENT")
    discount_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    discount_cap: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    reward_type: Mapped[str] = mapped_column(String(20), nullable=False, default="PERCENT")
    reward_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    reward_cap: Mapped[Optional[Decimal]] = mapped_column(MoneyType, nullable=True)

    valid_from: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    valid_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class VendorReferralProfile(Base):
    """A vendor's own shareable referral code."""
    __tablename__ = "vendor_referral_profiles"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    referral_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class VendorReferral(Base):
    """Link between a referred vendor and the vendor that referred it."""
    __tablename__ = "vendor_referrals"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    referrer_vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    referred_vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    referral_code: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReferralStatus.PENDING.value,
        comment="PENDING, QUALIFIED, REWARDED, REJECTED"
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    qualified_payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    qualified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rewarded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    meta: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
