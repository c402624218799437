"""
Referral wallet, its append-only ledger, and cashout requests.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Text, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from vendor_billing.database import Base
from vendor_billing.db_types import UUIDType, JSONType, MoneyType


class LedgerEntryType(str, Enum):
    EARNED = "EARNED"  # Referral reward credited
    CASHOUT_DEBIT = "CASHOUT_DEBIT"  # Reserved at request time
    CASHOUT_REVERT = "CASHOUT_REVERT"  # Returned on rejection
    CASHOUT_PAID = "CASHOUT_PAID"  # Payout confirmed


class CashoutStatus(str, Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class ReferralWallet(Base):
    """
    Materialized balance of a vendor's ledger. One row per vendor.
    """
    __tablename__ = "vendor_referral_wallets"
    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="ck_wallet_available_non_negative"),
        CheckConstraint("pending_balance >= 0", name="ck_wallet_pending_non_negative"),
        CheckConstraint("lifetime_paid_out <= lifetime_earned", name="ck_wallet_paid_out_le_earned"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    available_balance: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    pending_balance: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    lifetime_earned: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    lifetime_paid_out: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<ReferralWallet(vendor={self.vendor_id}, available={self.available_balance})>"


class WalletLedgerEntry(Base):
    """
    Immutable balance change. reference_key is unique per logical event.
    """
    __tablename__ = "vendor_referral_wallet_ledger"
    __table_args__ = (
        Index('ix_wallet_ledger_vendor_created', 'vendor_id', 'created_at'),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False
    )
    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="COMPLETED")
    reference_key: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)

    cashout_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    referral_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    meta: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class CashoutRequest(Base):
    """
    Vendor request to withdraw wallet balance.

    REQUESTED -> APPROVED -> PAID, or REQUESTED/APPROVED -> REJECTED.
    """
    __tablename__ = "vendor_referral_cashout_requests"
    __table_args__ = (
        Index('ix_cashout_requests_status', 'status'),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    vendor_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("vendors.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    requested_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CashoutStatus.REQUESTED.value,
        comment="REQUESTED, APPROVED, REJECTED, PAID"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payout_details: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Masked bank/UPI snapshot at request time"
    )

    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    utr_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

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
        return f"<CashoutRequest(vendor={self.vendor_id}, amount={self.requested_amount}, status='{self.status}')>"
