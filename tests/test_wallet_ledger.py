import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from vendor_billing.core.exceptions import (
    ValidationError,
    InsufficientBalanceError,
    InvalidStateError,
)
from vendor_billing.models import WalletLedgerEntry, LedgerEntryType
from vendor_billing.services.wallet_ledger import WalletLedger, reference_key


async def _entry_count(session, key):
    result = await session.execute(
        select(func.count(WalletLedgerEntry.id)).where(WalletLedgerEntry.reference_key == key)
    )
    return result.scalar()


class TestWalletLedger:
    async def test_credit_creates_wallet_and_entry(self, session, vendor):
        ledger = WalletLedger(session)
        posted = await ledger.credit(vendor.id, Decimal("150"), "ref_reward:p1")
        await session.commit()

        assert posted.applied is True
        assert posted.wallet.available_balance == Decimal("150.00")
        assert posted.wallet.lifetime_earned == Decimal("150.00")
        assert posted.entry.entry_type == LedgerEntryType.EARNED.value

    async def test_repeated_key_is_noop(self, session, vendor):
        ledger = WalletLedger(session)
        await ledger.credit(vendor.id, Decimal("100"), "ref_reward:p2")
        again = await ledger.credit(vendor.id, Decimal("100"), "ref_reward:p2")
        await session.commit()

        assert again.applied is False
        assert again.wallet.available_balance == Decimal("100.00")
        assert await _entry_count(session, "ref_reward:p2") == 1

    async def test_debit_beyond_available_rejected(self, session, vendor):
        vendor_id = vendor.id
        ledger = WalletLedger(session)
        await ledger.credit(vendor_id, Decimal("100"), "ref_reward:p3")
        await session.commit()

        with pytest.raises(InsufficientBalanceError):
            await ledger.debit(vendor_id, Decimal("100.01"), "cashout_debit:x")
        await session.rollback()

        wallet = await ledger.get_wallet(vendor_id)
        assert wallet.available_balance == Decimal("100.00")
        assert await _entry_count(session, "cashout_debit:x") == 0

    async def test_non_positive_amount_and_empty_key(self, session, vendor):
        ledger = WalletLedger(session)
        with pytest.raises(ValidationError):
            await ledger.credit(vendor.id, Decimal("0"), "ref_reward:zero")
        with pytest.raises(ValidationError):
            await ledger.credit(vendor.id, Decimal("-5"), "ref_reward:neg")
        with pytest.raises(ValidationError):
            await ledger.credit(vendor.id, Decimal("5"), "")

    async def test_payout_cannot_exceed_earnings(self, session, vendor):
        ledger = WalletLedger(session)
        await ledger.credit(vendor.id, Decimal("50"), "ref_reward:p4")
        with pytest.raises(InvalidStateError):
            await ledger.credit(
                vendor.id,
                Decimal("60"),
                "cashout_paid:y",
                entry_type=LedgerEntryType.CASHOUT_PAID,
            )

    async def test_debit_then_revert_restores_balance(self, session, vendor):
        ledger = WalletLedger(session)
        request_id = uuid.uuid4()
        await ledger.credit(vendor.id, Decimal("700"), "ref_reward:p5")
        await ledger.debit(vendor.id, Decimal("500"), reference_key("cashout_debit", request_id))
        posted = await ledger.credit(
            vendor.id,
            Decimal("500"),
            reference_key("cashout_revert", request_id),
            entry_type=LedgerEntryType.CASHOUT_REVERT,
        )
        await session.commit()

        assert posted.wallet.available_balance == Decimal("700.00")
        assert posted.wallet.lifetime_earned == Decimal("700.00")
        entries = await ledger.list_entries(vendor.id)
        assert len(entries) == 3
