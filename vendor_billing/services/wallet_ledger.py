"""
Wallet Ledger

Every change to a vendor's referral wallet is an append-only ledger
entry carrying a caller-chosen reference key. The wallet row is the
materialized balance and is updated in the same transaction as the
entry insert, under a row lock on the wallet.

Posting a reference key that already exists is a no-op reported as
``applied=False``; callers treat it as success.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_billing.core.exceptions import (
    ValidationError,
    InsufficientBalanceError,
    InvalidStateError,
)
from vendor_billing.core.money import to_decimal, quantize, ZERO
from vendor_billing.models.wallet import ReferralWallet, WalletLedgerEntry, LedgerEntryType

logger = logging.getLogger(__name__)


@dataclass
class LedgerPostResult:
    """Outcome of a ledger post."""
    entry: WalletLedgerEntry
    wallet: ReferralWallet
    applied: bool  # False when the reference key was already posted


def reference_key(prefix: str, event_id: Any) -> str:
    """Build a reference key such as ``cashout_revert:<id>``."""
    return f"{prefix}:{event_id}"


class WalletLedger:
    """Posts ledger entries and keeps the wallet projection in step."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_wallet(self, vendor_id: uuid.UUID) -> Optional[ReferralWallet]:
        result = await self.db.execute(
            select(ReferralWallet).where(ReferralWallet.vendor_id == vendor_id)
        )
        return result.scalar_one_or_none()

    async def find_entry(self, key: str) -> Optional[WalletLedgerEntry]:
        result = await self.db.execute(
            select(WalletLedgerEntry).where(WalletLedgerEntry.reference_key == key)
        )
        return result.scalar_one_or_none()

    async def list_entries(
        self,
        vendor_id: uuid.UUID,
        limit: int = 50,
    ) -> List[WalletLedgerEntry]:
        result = await self.db.execute(
            select(WalletLedgerEntry)
            .where(WalletLedgerEntry.vendor_id == vendor_id)
            .order_by(WalletLedgerEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ========================================================================
    # Locking
    # ========================================================================

    async def lock_wallet(self, vendor_id: uuid.UUID) -> ReferralWallet:
        """
        Return the vendor's wallet row locked FOR UPDATE, creating it if missing.

        Settlement rewards and cashout transitions both serialize here.
        """
        wallet = await self._select_for_update(vendor_id)
        if wallet:
            return wallet

        try:
            async with self.db.begin_nested():
                self.db.add(
                    ReferralWallet(
                        id=uuid.uuid4(),
                        vendor_id=vendor_id,
                        available_balance=ZERO,
                        pending_balance=ZERO,
                        lifetime_earned=ZERO,
                        lifetime_paid_out=ZERO,
                    )
                )
        except IntegrityError:
            # Created by a concurrent request
            logger.debug(f"Wallet for vendor {vendor_id} created concurrently")

        return await self._select_for_update(vendor_id)

    async def _select_for_update(self, vendor_id: uuid.UUID) -> Optional[ReferralWallet]:
        result = await self.db.execute(
            select(ReferralWallet)
            .where(ReferralWallet.vendor_id == vendor_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ========================================================================
    # Posting
    # ========================================================================

    async def credit(
        self,
        vendor_id: uuid.UUID,
        amount: Decimal,
        key: str,
        entry_type: LedgerEntryType = LedgerEntryType.EARNED,
        **links,
    ) -> LedgerPostResult:
        return await self.post(vendor_id, entry_type, amount, key, **links)

    async def debit(
        self,
        vendor_id: uuid.UUID,
        amount: Decimal,
        key: str,
        **links,
    ) -> LedgerPostResult:
        return await self.post(vendor_id, LedgerEntryType.CASHOUT_DEBIT, amount, key, **links)

    async def post(
        self,
        vendor_id: uuid.UUID,
        entry_type: LedgerEntryType,
        amount: Decimal,
        key: str,
        cashout_request_id: Optional[uuid.UUID] = None,
        payment_id: Optional[uuid.UUID] = None,
        referral_id: Optional[uuid.UUID] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> LedgerPostResult:
        """
        Insert a ledger entry and apply it to the wallet.

        Raises:
            ValidationError: non-positive amount or empty reference key
            InsufficientBalanceError: debit larger than available balance
            InvalidStateError: the entry would break a wallet invariant
        """
        amount = quantize(to_decimal(amount))
        if amount <= 0:
            raise ValidationError("Ledger amount must be positive")
        if not key:
            raise ValidationError("Ledger reference key is required")

        entry_type = LedgerEntryType(entry_type)
        wallet = await self.lock_wallet(vendor_id)

        existing = await self.find_entry(key)
        if existing:
            logger.info(f"Ledger entry {key} already applied; skipping")
            return LedgerPostResult(entry=existing, wallet=wallet, applied=False)

        balances = self._apply(wallet, entry_type, amount)

        entry = WalletLedgerEntry(
            id=uuid.uuid4(),
            vendor_id=vendor_id,
            entry_type=entry_type.value,
            amount=amount,
            status="COMPLETED",
            reference_key=key,
            cashout_request_id=cashout_request_id,
            payment_id=payment_id,
            referral_id=referral_id,
            meta=meta,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(entry)
        except IntegrityError:
            logger.info(f"Ledger entry {key} inserted concurrently; skipping")
            existing = await self.find_entry(key)
            return LedgerPostResult(entry=existing, wallet=wallet, applied=False)

        for field, value in balances.items():
            setattr(wallet, field, value)
        await self.db.flush()

        logger.info(
            f"Ledger {entry_type.value} {amount} for vendor {vendor_id} ({key}); "
            f"available={wallet.available_balance}"
        )
        return LedgerPostResult(entry=entry, wallet=wallet, applied=True)

    @staticmethod
    def _apply(
        wallet: ReferralWallet,
        entry_type: LedgerEntryType,
        amount: Decimal,
    ) -> Dict[str, Decimal]:
        """Compute the wallet balances after the entry and check invariants."""
        available = to_decimal(wallet.available_balance)
        pending = to_decimal(wallet.pending_balance)
        earned = to_decimal(wallet.lifetime_earned)
        paid_out = to_decimal(wallet.lifetime_paid_out)

        if entry_type == LedgerEntryType.EARNED:
            available += amount
            earned += amount
        elif entry_type == LedgerEntryType.CASHOUT_DEBIT:
            if amount > available:
                raise InsufficientBalanceError(
                    "Insufficient wallet balance",
                    details={"available_balance": str(available), "requested": str(amount)},
                )
            available -= amount
        elif entry_type == LedgerEntryType.CASHOUT_REVERT:
            available += amount
        elif entry_type == LedgerEntryType.CASHOUT_PAID:
            paid_out += amount

        if available < 0 or pending < 0:
            raise InvalidStateError("Wallet balance cannot go negative")
        if available + pending > earned:
            raise InvalidStateError("Wallet balance cannot exceed lifetime earnings")
        if paid_out > earned:
            raise InvalidStateError("Payouts cannot exceed lifetime earnings")

        return {
            "available_balance": available,
            "pending_balance": pending,
            "lifetime_earned": earned,
            "lifetime_paid_out": paid_out,
        }
