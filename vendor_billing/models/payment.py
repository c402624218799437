import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from vendor_billing.database import Base
from vendor_billing.db_types import UUIDType, MoneyType


class PaymentStatus(str, Enum):
    COMPLETED = "COMPLETED"


class OfferType(str, Enum):
    COUPON = "COUPON"
    REFERRAL = "REFERRAL"


class VendorPayment(Base):
    """
    Settled subscription payment.

    transaction_id (the gateway payment id) and gateway_order_id are
    unique: a second verification of the same confirmation finds the
    existing row instead of activating another subscription.
    """
    __tablename__ = "vendor_payments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendor_plans.id"),
        nullable=False
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendor_plan_subscriptions.id"),
        nullable=False,
        unique=True
    )

    # Amounts
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, comment="Plan list price")
    discount_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, comment="Amount charged")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")

    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.COMPLETED.value
    )
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False, default="Razorpay")

    # Gateway references
    transaction_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        comment="Gateway payment id"
    )
    gateway_order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    invoice_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    payment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Offer applied (at most one)
    offer_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, comment="COUPON, REFERRAL")
    offer_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    referral_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

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

    def __repr__(self) -> str:
        return f"<VendorPayment(tx='{self.transaction_id}', net={self.net_amount})>"
