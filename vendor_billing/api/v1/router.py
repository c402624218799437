from fastapi import APIRouter

from vendor_billing.api.v1.endpoints import (
    payments,
    referrals,
    finance,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Subscription Payments ====================
api_router.include_router(
    payments.router,
    prefix="/payment",
    tags=["Payments"]
)

# ==================== Vendor Referrals & Wallet ====================
api_router.include_router(
    referrals.router,
    prefix="/referrals",
    tags=["Referrals"]
)

# ==================== Finance (Cashouts, Coupons) ====================
api_router.include_router(
    finance.router,
    prefix="/finance",
    tags=["Finance"]
)
