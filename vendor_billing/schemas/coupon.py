"""Coupon administration schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from pydantic import Field

from vendor_billing.models.coupon import DiscountType
from vendor_billing.schemas.base import BaseResponseSchema, BaseCreateSchema


class CouponCreate(BaseCreateSchema):
    code: str = Field(..., min_length=1, max_length=50)
    discount_type: DiscountType
    value: Decimal = Field(..., gt=0)
    plan_id: Optional[str] = Field(None, description="Plan id or name; empty or ANY for every plan")
    vendor_id: Optional[str] = Field(None, description="Vendor id, code or email; empty or ANY for every vendor")
    max_uses: int = Field(0, ge=0, description="0 = unlimited")
    expires_at: Optional[datetime] = None
    is_active: bool = True


class CouponResponse(BaseResponseSchema):
    id: uuid.UUID
    code: str
    discount_type: str
    value: Decimal
    plan_id: Optional[str] = None
    vendor_id: Optional[str] = None
    max_uses: int
    used_count: int
    expires_at: Optional[datetime] = None
    is_active: bool
    created_at: datetime
