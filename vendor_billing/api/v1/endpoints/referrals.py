"""
Vendor referral endpoints: own code, wallet, linking and cashout requests.
"""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks

from vendor_billing.api.deps import DB, VendorActor, Dispatcher
from vendor_billing.schemas.cashout import (
    CashoutCreateRequest,
    CashoutResponse,
    CashoutActionResponse,
    WalletBalanceResponse,
    LedgerEntryResponse,
)
from vendor_billing.schemas.referral import (
    ReferralLinkRequest,
    ReferralLinkResponse,
    ReferralDashboardResponse,
)
from vendor_billing.services.cashout_service import CashoutService
from vendor_billing.services.referral_service import ReferralService

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Referrals"])


@router.get("/me", response_model=ReferralDashboardResponse)
async def get_my_referrals(
    db: DB,
    actor: VendorActor,
):
    """Referral code, wallet balances, recent ledger and cashout requests."""
    referrals = ReferralService(db)
    vendor = await referrals.get_vendor(actor.vendor_id)
    profile = await referrals.ensure_profile(vendor)
    program = await referrals.get_program_settings()
    counts = await referrals.referral_summary(vendor.id)
    referred_by = await referrals.get_active_referral(vendor.id)

    summary = await CashoutService(db).wallet_summary(vendor.id)

    return ReferralDashboardResponse(
        vendor_id=vendor.id,
        referral_code=profile.referral_code,
        program_enabled=program.is_enabled,
        available_balance=summary.available_balance,
        pending_balance=summary.pending_balance,
        lifetime_earned=summary.lifetime_earned,
        lifetime_paid_out=summary.lifetime_paid_out,
        min_cashout_amount=summary.min_cashout_amount,
        referrals=counts,
        ledger=[LedgerEntryResponse.model_validate(e) for e in summary.ledger],
        cashouts=[CashoutResponse.model_validate(c) for c in summary.cashouts],
        referred_by=referred_by.referrer_vendor_id if referred_by else None,
    )


@router.post("/link", response_model=ReferralLinkResponse)
async def link_referral_code(
    data: ReferralLinkRequest,
    db: DB,
    actor: VendorActor,
):
    """Record which vendor referred the caller."""
    referrals = ReferralService(db)
    vendor = await referrals.get_vendor(actor.vendor_id)
    referral = await referrals.link_referral(vendor, data.referral_code)
    await db.commit()
    return ReferralLinkResponse.model_validate(referral)


@router.get("/cashouts", response_model=List[CashoutResponse])
async def list_my_cashouts(
    db: DB,
    actor: VendorActor,
):
    cashouts = await CashoutService(db).list_for_vendor(actor.vendor_id)
    return [CashoutResponse.model_validate(c) for c in cashouts]


@router.post("/cashout", response_model=CashoutActionResponse)
async def request_cashout(
    data: CashoutCreateRequest,
    background_tasks: BackgroundTasks,
    db: DB,
    actor: VendorActor,
    dispatcher: Dispatcher,
):
    """
    Withdraw wallet balance. The amount leaves the available balance
    immediately and returns only if finance rejects the request.
    """
    await ReferralService(db).get_vendor(actor.vendor_id)

    result = await CashoutService(db).request(
        actor.vendor_id,
        data.amount,
        note=data.note,
        payout_details=data.payout_details,
        actor=actor.to_audit(),
    )
    background_tasks.add_task(dispatcher.dispatch, result.side_effects)

    return CashoutActionResponse(
        request=CashoutResponse.model_validate(result.request),
        wallet=WalletBalanceResponse.model_validate(result.wallet) if result.wallet else None,
    )
