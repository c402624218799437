"""
Payment API endpoints for subscription purchases.

Handles:
- Checkout order creation (offer resolved server-side)
- Payment verification and subscription activation
- Referral offer preview per plan
- Plan listing and payment history
"""

import uuid
import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Query

from vendor_billing.api.deps import (
    DB,
    CurrentActor,
    AppSettings,
    Gateway,
    Dispatcher,
    ensure_can_act_for_vendor,
)
from vendor_billing.schemas.payment import (
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    PaymentResponse,
    SubscriptionResponse,
    PlanResponse,
    PaymentHistoryResponse,
    PlanOfferPreviewResponse,
    ReferralOffersResponse,
)
from vendor_billing.services.referral_service import ReferralService
from vendor_billing.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Payments"])


@router.post(
    "/initiate",
    response_model=InitiatePaymentResponse,
    summary="Create a gateway order for a plan purchase",
)
async def initiate_payment(
    data: InitiatePaymentRequest,
    db: DB,
    actor: CurrentActor,
    settings: AppSettings,
    gateway: Gateway,
):
    """
    Price the plan for the vendor (coupon or referral offer applied) and
    create the gateway order the frontend opens checkout with.
    """
    ensure_can_act_for_vendor(actor, data.vendor_id)

    order = await SettlementService(db, settings, gateway).initiate(
        data.vendor_id,
        data.plan_id,
        data.coupon_code,
    )
    return InitiatePaymentResponse.model_validate(order)


@router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify a payment and activate the subscription",
)
async def verify_payment(
    data: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    db: DB,
    actor: CurrentActor,
    settings: AppSettings,
    gateway: Gateway,
    dispatcher: Dispatcher,
):
    """
    Verify the gateway signature and settle the purchase.

    Verifying the same payment again returns the original settlement
    with already_settled=true.
    """
    ensure_can_act_for_vendor(actor, data.vendor_id)

    result = await SettlementService(db, settings, gateway).verify(
        order_id=data.order_id,
        payment_id=data.payment_id,
        signature=data.signature,
        vendor_id=data.vendor_id,
        plan_id=data.plan_id,
        code=data.coupon_code,
        actor=actor.to_audit(),
    )

    if result.side_effects:
        background_tasks.add_task(dispatcher.dispatch, result.side_effects)

    return VerifyPaymentResponse(
        already_settled=result.already_settled,
        message=(
            "Payment already settled" if result.already_settled
            else "Payment verified and subscription activated"
        ),
        payment=PaymentResponse.model_validate(result.payment),
        subscription=(
            SubscriptionResponse.model_validate(result.subscription)
            if result.subscription else None
        ),
        referral_reward_applied=bool(result.reward and result.reward.applied),
    )


@router.get(
    "/referral-offers/{vendor_id}",
    response_model=ReferralOffersResponse,
    summary="Preview the vendor's referral discount per plan",
)
async def get_referral_offers(
    vendor_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    ensure_can_act_for_vendor(actor, vendor_id)

    service = ReferralService(db)
    vendor = await service.get_vendor(vendor_id)
    program = await service.get_program_settings()
    previews = await service.preview_offers(vendor)

    return ReferralOffersResponse(
        vendor_id=vendor.id,
        program_enabled=program.is_enabled,
        offers=[PlanOfferPreviewResponse.model_validate(p) for p in previews],
    )


@router.get(
    "/plans",
    response_model=List[PlanResponse],
    summary="List plans available for purchase",
)
async def list_plans(
    db: DB,
    settings: AppSettings,
    gateway: Gateway,
):
    plans = await SettlementService(db, settings, gateway).list_plans()
    return [PlanResponse.model_validate(p) for p in plans]


@router.get(
    "/history/{vendor_id}",
    response_model=PaymentHistoryResponse,
    summary="Vendor's subscription payments",
)
async def get_payment_history(
    vendor_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    settings: AppSettings,
    gateway: Gateway,
    limit: int = Query(50, ge=1, le=200),
):
    ensure_can_act_for_vendor(actor, vendor_id)

    service = SettlementService(db, settings, gateway)
    payments = await service.payment_history(vendor_id, limit=limit)
    active = await service.active_subscription(vendor_id)

    return PaymentHistoryResponse(
        items=[PaymentResponse.model_validate(p) for p in payments],
        total=len(payments),
        active_subscription=SubscriptionResponse.model_validate(active) if active else None,
    )
