import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from vendor_billing.core.exceptions import (
    ValidationError,
    NotFoundError,
    InvalidStateError,
    InsufficientBalanceError,
)
from vendor_billing.models import CashoutStatus, LedgerEntryType, WalletLedgerEntry
from vendor_billing.services.cashout_service import CashoutService
from vendor_billing.services.side_effects import SideEffectKind
from vendor_billing.services.wallet_ledger import WalletLedger


FINANCE = {"actor_id": "u-finance", "actor_role": "FINANCE", "actor_email": "finance@example.com"}


@pytest.fixture
def fund_wallet(session):
    async def _fund(vendor_id, amount="700"):
        await WalletLedger(session).credit(vendor_id, Decimal(amount), f"ref_reward:{uuid.uuid4()}")
        await session.commit()

    return _fund


async def _entries(session, request_id, entry_type):
    result = await session.execute(
        select(WalletLedgerEntry).where(
            WalletLedgerEntry.cashout_request_id == request_id,
            WalletLedgerEntry.entry_type == entry_type.value,
        )
    )
    return list(result.scalars().all())


class TestCashoutRequest:
    async def test_request_debits_wallet(self, session, vendor, fund_wallet):
        await fund_wallet(vendor.id, "700")
        result = await CashoutService(session).request(vendor.id, Decimal("500"), note="March payout")

        assert result.request.status == CashoutStatus.REQUESTED.value
        assert result.wallet.available_balance == Decimal("200.00")
        assert result.wallet.lifetime_earned == Decimal("700.00")
        assert len(await _entries(session, result.request.id, LedgerEntryType.CASHOUT_DEBIT)) == 1
        assert [e.kind for e in result.side_effects] == [SideEffectKind.AUDIT_LOG]
        assert result.side_effects[0].payload["action"] == "CASHOUT_REQUESTED"

    async def test_request_below_minimum(self, session, vendor, fund_wallet):
        await fund_wallet(vendor.id, "700")
        with pytest.raises(ValidationError, match="Minimum cashout amount"):
            await CashoutService(session).request(vendor.id, Decimal("499.99"))

    async def test_request_non_positive(self, session, vendor):
        with pytest.raises(ValidationError):
            await CashoutService(session).request(vendor.id, Decimal("0"))

    async def test_request_more_than_available(self, session, vendor, fund_wallet):
        vendor_id = vendor.id
        await fund_wallet(vendor_id, "600")
        with pytest.raises(InsufficientBalanceError):
            await CashoutService(session).request(vendor_id, Decimal("650"))
        await session.rollback()

        summary = await CashoutService(session).wallet_summary(vendor_id)
        assert summary.available_balance == Decimal("600.00")
        assert summary.cashouts == []


class TestCashoutDecisions:
    async def test_reject_restores_balance_once(self, session, vendor, fund_wallet):
        vendor_id = vendor.id
        await fund_wallet(vendor_id, "500")
        service = CashoutService(session)
        requested = await service.request(vendor_id, Decimal("500"))
        request_id = requested.request.id
        assert requested.wallet.available_balance == Decimal("0.00")

        rejected = await service.reject(request_id, "duplicate", actor=FINANCE)
        assert rejected.request.status == CashoutStatus.REJECTED.value
        assert rejected.request.rejection_reason == "duplicate"
        assert rejected.wallet.available_balance == Decimal("500.00")
        assert rejected.side_effects[0].payload["action"] == "CASHOUT_REJECTED"

        with pytest.raises(InvalidStateError):
            await service.reject(request_id, "Again", actor=FINANCE)
        await session.rollback()

        reverts = await _entries(session, request_id, LedgerEntryType.CASHOUT_REVERT)
        assert len(reverts) == 1
        assert reverts[0].amount == Decimal("500.00")
        summary = await service.wallet_summary(vendor_id)
        assert summary.available_balance == Decimal("500.00")

    async def test_reject_requires_reason(self, session, vendor, fund_wallet):
        await fund_wallet(vendor.id)
        service = CashoutService(session)
        requested = await service.request(vendor.id, Decimal("500"))

        with pytest.raises(ValidationError):
            await service.reject(requested.request.id, "   ")

    async def test_approve_is_idempotent(self, session, vendor, fund_wallet):
        await fund_wallet(vendor.id)
        service = CashoutService(session)
        requested = await service.request(vendor.id, Decimal("500"))

        first = await service.approve(requested.request.id, actor=FINANCE)
        assert first.changed is True
        assert first.request.status == CashoutStatus.APPROVED.value
        assert first.request.processed_by == "finance@example.com"
        assert first.side_effects[0].payload["action"] == "CASHOUT_APPROVED"

        second = await service.approve(requested.request.id, actor=FINANCE)
        assert second.changed is False
        assert second.side_effects == []

        summary = await service.wallet_summary(vendor.id)
        assert summary.available_balance == Decimal("200.00")

    async def test_mark_paid_requires_approval(self, session, vendor, fund_wallet):
        await fund_wallet(vendor.id)
        service = CashoutService(session)
        requested = await service.request(vendor.id, Decimal("500"))

        with pytest.raises(InvalidStateError):
            await service.mark_paid(requested.request.id, "UTR123")

    async def test_mark_paid_requires_utr(self, session, vendor, fund_wallet):
        await fund_wallet(vendor.id)
        service = CashoutService(session)
        requested = await service.request(vendor.id, Decimal("500"))
        await service.approve(requested.request.id)

        with pytest.raises(ValidationError, match="UTR"):
            await service.mark_paid(requested.request.id, "  ")

    async def test_approve_then_paid(self, session, vendor, fund_wallet):
        await fund_wallet(vendor.id, "700")
        service = CashoutService(session)
        requested = await service.request(vendor.id, Decimal("500"))
        await service.approve(requested.request.id, actor=FINANCE)

        paid = await service.mark_paid(
            requested.request.id,
            "UTR0001",
            receipt_url="https://files.example.com/r.pdf",
            actor=FINANCE,
        )
        assert paid.request.status == CashoutStatus.PAID.value
        assert paid.request.utr_number == "UTR0001"
        assert paid.request.paid_at is not None
        assert paid.wallet.available_balance == Decimal("200.00")
        assert paid.wallet.lifetime_paid_out == Decimal("500.00")

        with pytest.raises(InvalidStateError):
            await service.reject(requested.request.id, "Too late")

    async def test_unknown_request(self, session):
        with pytest.raises(NotFoundError):
            await CashoutService(session).approve(uuid.uuid4())

    async def test_list_all_filters_by_status(self, session, vendor, fund_wallet):
        await fund_wallet(vendor.id, "1500")
        service = CashoutService(session)
        first = await service.request(vendor.id, Decimal("500"))
        await service.request(vendor.id, Decimal("500"))
        await service.approve(first.request.id)

        items, total = await service.list_all(status="approved")
        assert total == 1
        assert items[0].id == first.request.id

        _, total = await service.list_all()
        assert total == 2

        with pytest.raises(ValidationError):
            await service.list_all(status="SETTLED")
