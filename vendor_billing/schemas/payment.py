"""Payment schemas for subscription checkout and settlement."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import uuid

from pydantic import Field

from vendor_billing.schemas.base import BaseResponseSchema, BaseCreateSchema


class InitiatePaymentRequest(BaseCreateSchema):
    """API request to start a plan checkout."""
    vendor_id: uuid.UUID = Field(..., description="Vendor buying the plan")
    plan_id: uuid.UUID = Field(..., description="Plan being bought")
    coupon_code: Optional[str] = Field(None, max_length=50, description="Coupon or referral code")


class InitiatePaymentResponse(BaseResponseSchema):
    order_id: str
    amount: int = Field(..., description="Amount in paise")
    currency: str
    key_id: str
    vendor_id: uuid.UUID
    plan_id: uuid.UUID
    base_amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    offer_type: Optional[str] = None
    offer_code: Optional[str] = None
    referral_id: Optional[uuid.UUID] = None


class VerifyPaymentRequest(BaseCreateSchema):
    """API request to settle a paid checkout."""
    order_id: str = Field(..., min_length=1, description="Gateway order ID")
    payment_id: str = Field(..., min_length=1, description="Gateway payment ID")
    signature: str = Field(..., min_length=1, description="Gateway signature for verification")
    vendor_id: uuid.UUID
    plan_id: uuid.UUID
    coupon_code: Optional[str] = Field(None, max_length=50)


class PaymentResponse(BaseResponseSchema):
    id: uuid.UUID
    vendor_id: uuid.UUID
    plan_id: uuid.UUID
    subscription_id: uuid.UUID
    amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    currency: str
    description: Optional[str] = None
    status: str
    payment_method: str
    transaction_id: str
    gateway_order_id: str
    invoice_number: str
    payment_date: datetime
    offer_type: Optional[str] = None
    offer_code: Optional[str] = None
    coupon_code: Optional[str] = None
    referral_id: Optional[uuid.UUID] = None


class SubscriptionResponse(BaseResponseSchema):
    id: uuid.UUID
    vendor_id: uuid.UUID
    plan_id: uuid.UUID
    status: str
    start_date: datetime
    end_date: datetime
    plan_duration_days: int


class VerifyPaymentResponse(BaseResponseSchema):
    success: bool = True
    already_settled: bool = False
    message: str
    payment: PaymentResponse
    subscription: Optional[SubscriptionResponse] = None
    referral_reward_applied: bool = False


class PlanResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    price: Decimal
    duration_days: Optional[int] = None
    is_active: bool
    extra_lead_price: Decimal = Field(Decimal("0"), description="Per-extra-lead price override")


class PaymentHistoryResponse(BaseResponseSchema):
    items: List[PaymentResponse]
    total: int
    active_subscription: Optional[SubscriptionResponse] = None


class PlanOfferPreviewResponse(BaseResponseSchema):
    plan_id: uuid.UUID
    plan_name: str
    base_amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    discount_percent: Decimal
    display_discount_percent: Decimal
    configured_discount_type: Optional[str] = None
    configured_discount_value: Decimal
    configured_discount_cap: Optional[Decimal] = None
    offer_type: Optional[str] = None
    offer_code: Optional[str] = None


class ReferralOffersResponse(BaseResponseSchema):
    vendor_id: uuid.UUID
    program_enabled: bool
    offers: List[PlanOfferPreviewResponse]
