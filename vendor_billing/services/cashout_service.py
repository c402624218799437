"""
Referral Cashout Service

Vendors withdraw referral wallet balance through cashout requests:

    REQUESTED -> APPROVED -> PAID
    REQUESTED | APPROVED -> REJECTED

The requested amount is debited from the wallet when the request is
created. Rejection credits it back; payout only moves lifetime_paid_out.
Every wallet change goes through the ledger with a per-request key, so a
repeated transition can never move the balance twice.
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_billing.core.exceptions import ValidationError, NotFoundError
from vendor_billing.core.money import ZERO, to_decimal, quantize, utcnow
from vendor_billing.models.wallet import (
    CashoutRequest,
    CashoutStatus,
    LedgerEntryType,
    ReferralWallet,
    WalletLedgerEntry,
)
from vendor_billing.services.cashout_state_machine import validate_transition, get_transition_action
from vendor_billing.services.referral_service import ReferralService
from vendor_billing.services.side_effects import SideEffect, audit_intent
from vendor_billing.services.wallet_ledger import WalletLedger, reference_key

logger = logging.getLogger(__name__)


@dataclass
class CashoutResult:
    request: CashoutRequest
    wallet: Optional[ReferralWallet] = None
    changed: bool = True  # False for a no-op re-approve
    side_effects: List[SideEffect] = field(default_factory=list)


@dataclass
class WalletSummary:
    vendor_id: uuid.UUID
    available_balance: Decimal = ZERO
    pending_balance: Decimal = ZERO
    lifetime_earned: Decimal = ZERO
    lifetime_paid_out: Decimal = ZERO
    min_cashout_amount: Decimal = ZERO
    ledger: List[WalletLedgerEntry] = field(default_factory=list)
    cashouts: List[CashoutRequest] = field(default_factory=list)


class CashoutService:
    """Cashout requests and their finance decisions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = WalletLedger(db)

    # ========================================================================
    # Reads
    # ========================================================================

    async def _lock_request(self, request_id: uuid.UUID) -> CashoutRequest:
        result = await self.db.execute(
            select(CashoutRequest)
            .where(CashoutRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        cashout = result.scalar_one_or_none()
        if not cashout:
            raise NotFoundError("Cashout request not found", details={"request_id": str(request_id)})
        return cashout

    async def list_for_vendor(self, vendor_id: uuid.UUID, limit: int = 50) -> List[CashoutRequest]:
        result = await self.db.execute(
            select(CashoutRequest)
            .where(CashoutRequest.vendor_id == vendor_id)
            .order_by(CashoutRequest.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_all(
        self,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[CashoutRequest], int]:
        """Cashout requests for finance review, newest first."""
        query = select(CashoutRequest)
        count_query = select(func.count(CashoutRequest.id))
        if status:
            status = status.upper()
            if status not in CashoutStatus.__members__:
                raise ValidationError(f"Unknown cashout status: {status}")
            query = query.where(CashoutRequest.status == status)
            count_query = count_query.where(CashoutRequest.status == status)

        total = (await self.db.execute(count_query)).scalar() or 0
        result = await self.db.execute(
            query.order_by(CashoutRequest.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all()), total

    async def wallet_summary(self, vendor_id: uuid.UUID) -> WalletSummary:
        wallet = await self.ledger.get_wallet(vendor_id)
        program = await ReferralService(self.db).get_program_settings()
        summary = WalletSummary(
            vendor_id=vendor_id,
            min_cashout_amount=program.min_cashout_amount,
            ledger=await self.ledger.list_entries(vendor_id),
            cashouts=await self.list_for_vendor(vendor_id),
        )
        if wallet:
            summary.available_balance = to_decimal(wallet.available_balance)
            summary.pending_balance = to_decimal(wallet.pending_balance)
            summary.lifetime_earned = to_decimal(wallet.lifetime_earned)
            summary.lifetime_paid_out = to_decimal(wallet.lifetime_paid_out)
        return summary

    # ========================================================================
    # Vendor action
    # ========================================================================

    async def request(
        self,
        vendor_id: uuid.UUID,
        amount: Any,
        note: Optional[str] = None,
        payout_details: Optional[Dict[str, Any]] = None,
        actor: Optional[Dict[str, Any]] = None,
    ) -> CashoutResult:
        """
        Create a cashout request and debit the wallet in one transaction.

        Raises:
            ValidationError: amount not positive or below the program minimum
            InsufficientBalanceError: amount above the available balance
        """
        amount = quantize(to_decimal(amount))
        if amount <= 0:
            raise ValidationError("Cashout amount must be greater than zero")

        program = await ReferralService(self.db).get_program_settings()
        if amount < program.min_cashout_amount:
            raise ValidationError(
                f"Minimum cashout amount is {program.min_cashout_amount}",
                details={"min_cashout_amount": str(program.min_cashout_amount)},
            )

        cashout = CashoutRequest(
            id=uuid.uuid4(),
            vendor_id=vendor_id,
            requested_amount=amount,
            status=CashoutStatus.REQUESTED.value,
            notes=(note or "").strip() or None,
            payout_details=payout_details,
        )
        self.db.add(cashout)
        await self.db.flush()

        posted = await self.ledger.debit(
            vendor_id,
            amount,
            reference_key("cashout_debit", cashout.id),
            cashout_request_id=cashout.id,
        )
        await self.db.commit()

        logger.info(f"Cashout {cashout.id} requested by vendor {vendor_id} for {amount}")
        return CashoutResult(
            request=cashout,
            wallet=posted.wallet,
            side_effects=[
                audit_intent(
                    "CASHOUT_REQUESTED",
                    "vendor_referral_cashout_requests",
                    cashout.id,
                    actor=actor,
                    details={"vendor_id": str(vendor_id), "amount": str(amount)},
                )
            ],
        )

    # ========================================================================
    # Finance actions
    # ========================================================================

    async def approve(
        self,
        request_id: uuid.UUID,
        actor: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
    ) -> CashoutResult:
        """Approve a request. Approving an APPROVED request changes nothing."""
        cashout = await self._lock_request(request_id)
        previous = cashout.status
        validate_transition(previous, CashoutStatus.APPROVED.value)

        if previous == CashoutStatus.APPROVED.value:
            await self.db.commit()
            logger.info(f"Cashout {cashout.id} already approved; no change")
            return CashoutResult(request=cashout, changed=False)

        cashout.status = CashoutStatus.APPROVED.value
        cashout.approved_at = utcnow()
        cashout.processed_by = self._processed_by(actor)
        if note:
            cashout.notes = note.strip()
        await self.db.commit()

        logger.info(f"Cashout {cashout.id} approved by {cashout.processed_by}")
        return CashoutResult(
            request=cashout,
            side_effects=[self._transition_audit(cashout, previous, actor)],
        )

    async def reject(
        self,
        request_id: uuid.UUID,
        reason: str,
        actor: Optional[Dict[str, Any]] = None,
    ) -> CashoutResult:
        """
        Reject a request and return its amount to the vendor's wallet.

        Raises:
            ValidationError: empty reason
            InvalidStateError: request already REJECTED or PAID
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Rejection reason is required")

        cashout = await self._lock_request(request_id)
        previous = cashout.status
        validate_transition(previous, CashoutStatus.REJECTED.value)

        posted = await self.ledger.credit(
            cashout.vendor_id,
            cashout.requested_amount,
            reference_key("cashout_revert", cashout.id),
            entry_type=LedgerEntryType.CASHOUT_REVERT,
            cashout_request_id=cashout.id,
            meta={"reason": reason},
        )

        cashout.status = CashoutStatus.REJECTED.value
        cashout.rejection_reason = reason
        cashout.rejected_at = utcnow()
        cashout.processed_by = self._processed_by(actor)
        await self.db.commit()

        logger.info(f"Cashout {cashout.id} rejected; {cashout.requested_amount} returned to wallet")
        return CashoutResult(
            request=cashout,
            wallet=posted.wallet,
            side_effects=[self._transition_audit(cashout, previous, actor, {"reason": reason})],
        )

    async def mark_paid(
        self,
        request_id: uuid.UUID,
        utr_number: str,
        receipt_url: Optional[str] = None,
        actor: Optional[Dict[str, Any]] = None,
    ) -> CashoutResult:
        """
        Record the payout of an approved request.

        Raises:
            ValidationError: empty payout reference (UTR)
            InvalidStateError: request not APPROVED
        """
        utr_number = (utr_number or "").strip()
        if not utr_number:
            raise ValidationError("Payout reference (UTR) is required")

        cashout = await self._lock_request(request_id)
        previous = cashout.status
        validate_transition(previous, CashoutStatus.PAID.value)

        posted = await self.ledger.credit(
            cashout.vendor_id,
            cashout.requested_amount,
            reference_key("cashout_paid", cashout.id),
            entry_type=LedgerEntryType.CASHOUT_PAID,
            cashout_request_id=cashout.id,
            meta={"utr_number": utr_number},
        )

        cashout.status = CashoutStatus.PAID.value
        cashout.utr_number = utr_number
        cashout.receipt_url = (receipt_url or "").strip() or None
        cashout.paid_at = utcnow()
        cashout.processed_by = self._processed_by(actor)
        await self.db.commit()

        logger.info(f"Cashout {cashout.id} paid out, UTR {utr_number}")
        return CashoutResult(
            request=cashout,
            wallet=posted.wallet,
            side_effects=[
                self._transition_audit(cashout, previous, actor, {"utr_number": utr_number})
            ],
        )

    @staticmethod
    def _processed_by(actor: Optional[Dict[str, Any]]) -> Optional[str]:
        if not actor:
            return None
        return actor.get("actor_email") or actor.get("actor_id")

    @staticmethod
    def _transition_audit(
        cashout: CashoutRequest,
        previous: str,
        actor: Optional[Dict[str, Any]],
        extra: Optional[Dict[str, Any]] = None,
    ) -> SideEffect:
        details = {
            "vendor_id": str(cashout.vendor_id),
            "amount": str(cashout.requested_amount),
            "from_status": previous,
            "to_status": cashout.status,
        }
        details.update(extra or {})
        return audit_intent(
            f"CASHOUT_{cashout.status}",
            "vendor_referral_cashout_requests",
            cashout.id,
            actor=actor,
            details=details,
            description=get_transition_action(previous, cashout.status),
        )
