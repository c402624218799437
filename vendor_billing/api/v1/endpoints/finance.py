"""
Finance endpoints: referral cashout review and coupon administration.

All routes require a FINANCE or ADMIN actor.
"""

import uuid
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Query

from vendor_billing.api.deps import DB, StaffActor, Dispatcher
from vendor_billing.schemas.cashout import (
    CashoutResponse,
    CashoutListResponse,
    CashoutActionResponse,
    CashoutApproveRequest,
    CashoutRejectRequest,
    CashoutMarkPaidRequest,
    WalletBalanceResponse,
)
from vendor_billing.schemas.coupon import CouponCreate, CouponResponse
from vendor_billing.services.cashout_service import CashoutService, CashoutResult
from vendor_billing.services.coupon_service import CouponService

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Finance"])


def _action_response(result: CashoutResult) -> CashoutActionResponse:
    return CashoutActionResponse(
        changed=result.changed,
        request=CashoutResponse.model_validate(result.request),
        wallet=WalletBalanceResponse.model_validate(result.wallet) if result.wallet else None,
    )


# ==================== Referral Cashouts ====================

@router.get("/referrals/cashouts", response_model=CashoutListResponse)
async def list_cashout_requests(
    db: DB,
    actor: StaffActor,
    status: Optional[str] = Query(None, description="REQUESTED, APPROVED, REJECTED or PAID"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    items, total = await CashoutService(db).list_all(status=status, skip=skip, limit=limit)
    return CashoutListResponse(
        items=[CashoutResponse.model_validate(c) for c in items],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("/referrals/cashouts/{request_id}/approve", response_model=CashoutActionResponse)
async def approve_cashout(
    request_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    db: DB,
    actor: StaffActor,
    dispatcher: Dispatcher,
    data: Optional[CashoutApproveRequest] = None,
):
    """Approve a cashout. Re-approving is a no-op."""
    result = await CashoutService(db).approve(
        request_id,
        actor=actor.to_audit(),
        note=data.note if data else None,
    )
    if result.side_effects:
        background_tasks.add_task(dispatcher.dispatch, result.side_effects)
    return _action_response(result)


@router.post("/referrals/cashouts/{request_id}/reject", response_model=CashoutActionResponse)
async def reject_cashout(
    request_id: uuid.UUID,
    data: CashoutRejectRequest,
    background_tasks: BackgroundTasks,
    db: DB,
    actor: StaffActor,
    dispatcher: Dispatcher,
):
    """Reject a cashout and return the amount to the vendor's wallet."""
    result = await CashoutService(db).reject(request_id, data.reason, actor=actor.to_audit())
    background_tasks.add_task(dispatcher.dispatch, result.side_effects)
    return _action_response(result)


@router.post("/referrals/cashouts/{request_id}/mark-paid", response_model=CashoutActionResponse)
async def mark_cashout_paid(
    request_id: uuid.UUID,
    data: CashoutMarkPaidRequest,
    background_tasks: BackgroundTasks,
    db: DB,
    actor: StaffActor,
    dispatcher: Dispatcher,
):
    """Record the payout of an approved cashout."""
    result = await CashoutService(db).mark_paid(
        request_id,
        data.utr_number,
        receipt_url=data.receipt_url,
        actor=actor.to_audit(),
    )
    background_tasks.add_task(dispatcher.dispatch, result.side_effects)
    return _action_response(result)


# ==================== Coupons ====================

@router.get("/coupons", response_model=List[CouponResponse])
async def list_coupons(
    db: DB,
    actor: StaffActor,
    active_only: bool = False,
):
    coupons = await CouponService(db).list_coupons(active_only=active_only)
    return [CouponResponse.model_validate(c) for c in coupons]


@router.post("/coupons", response_model=CouponResponse, status_code=201)
async def create_coupon(
    data: CouponCreate,
    background_tasks: BackgroundTasks,
    db: DB,
    actor: StaffActor,
    dispatcher: Dispatcher,
):
    result = await CouponService(db).create(
        code=data.code,
        discount_type=data.discount_type.value,
        value=data.value,
        plan_id=data.plan_id,
        vendor_id=data.vendor_id,
        max_uses=data.max_uses,
        expires_at=data.expires_at,
        is_active=data.is_active,
        actor=actor.to_audit(),
    )
    background_tasks.add_task(dispatcher.dispatch, result.side_effects)
    return CouponResponse.model_validate(result.coupon)


@router.post("/coupons/{code}/deactivate", response_model=CouponResponse)
async def deactivate_coupon(
    code: str,
    background_tasks: BackgroundTasks,
    db: DB,
    actor: StaffActor,
    dispatcher: Dispatcher,
):
    result = await CouponService(db).deactivate(code, actor=actor.to_audit())
    background_tasks.add_task(dispatcher.dispatch, result.side_effects)
    return CouponResponse.model_validate(result.coupon)
