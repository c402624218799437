"""
Coupon administration for finance staff.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_billing.core.exceptions import ValidationError, NotFoundError
from vendor_billing.core.money import to_decimal, quantize, normalize_coupon_code
from vendor_billing.core.scope import parse_scope
from vendor_billing.models.coupon import PlanCoupon, DiscountType
from vendor_billing.services.side_effects import SideEffect, audit_intent

logger = logging.getLogger(__name__)


@dataclass
class CouponResult:
    coupon: PlanCoupon
    side_effects: List[SideEffect] = field(default_factory=list)


class CouponService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_coupons(self, active_only: bool = False) -> List[PlanCoupon]:
        query = select(PlanCoupon).order_by(PlanCoupon.created_at.desc())
        if active_only:
            query = query.where(PlanCoupon.is_active == True)  # noqa: E712
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create(
        self,
        code: str,
        discount_type: str,
        value: Any,
        plan_id: Optional[str] = None,
        vendor_id: Optional[str] = None,
        max_uses: int = 0,
        expires_at: Optional[datetime] = None,
        is_active: bool = True,
        actor: Optional[Dict[str, Any]] = None,
    ) -> CouponResult:
        """
        Create a coupon. Scope values that mean "everyone" are stored as NULL.

        Raises:
            ValidationError: bad code, type, value or usage cap, or a duplicate code
        """
        normalized = normalize_coupon_code(code)
        if not normalized:
            raise ValidationError("Coupon code is required")

        discount_type = str(discount_type or "").strip().upper()
        if discount_type not in DiscountType.__members__:
            raise ValidationError("discount_type must be PERCENT or FLAT")

        amount = quantize(to_decimal(value))
        if amount <= 0:
            raise ValidationError("Coupon value must be greater than zero")
        if discount_type == DiscountType.PERCENT.value and amount > Decimal("100"):
            raise ValidationError("Percent coupon value cannot exceed 100")

        if max_uses is None or int(max_uses) < 0:
            raise ValidationError("max_uses cannot be negative")

        coupon = PlanCoupon(
            id=uuid.uuid4(),
            code=normalized,
            discount_type=discount_type,
            value=amount,
            plan_id=parse_scope(plan_id).to_storage(),
            vendor_id=parse_scope(vendor_id).to_storage(),
            max_uses=int(max_uses),
            used_count=0,
            expires_at=expires_at,
            is_active=is_active,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(coupon)
        except IntegrityError:
            raise ValidationError(f"Coupon code {normalized} already exists")
        await self.db.commit()

        logger.info(f"Coupon {normalized} created ({discount_type} {amount})")
        return CouponResult(
            coupon=coupon,
            side_effects=[
                audit_intent(
                    "COUPON_CREATED",
                    "vendor_plan_coupons",
                    coupon.id,
                    actor=actor,
                    details={
                        "code": normalized,
                        "discount_type": discount_type,
                        "value": str(amount),
                        "plan_id": coupon.plan_id,
                        "vendor_id": coupon.vendor_id,
                        "max_uses": coupon.max_uses,
                        "expires_at": expires_at.isoformat() if expires_at else None,
                    },
                )
            ],
        )

    async def deactivate(self, code: str, actor: Optional[Dict[str, Any]] = None) -> CouponResult:
        normalized = normalize_coupon_code(code)
        result = await self.db.execute(
            select(PlanCoupon).where(func.upper(PlanCoupon.code) == normalized)
        )
        coupon = result.scalar_one_or_none()
        if not coupon:
            raise NotFoundError("Coupon not found", details={"code": normalized})

        coupon.is_active = False
        await self.db.commit()

        logger.info(f"Coupon {normalized} deactivated")
        return CouponResult(
            coupon=coupon,
            side_effects=[
                audit_intent(
                    "COUPON_DEACTIVATED",
                    "vendor_plan_coupons",
                    coupon.id,
                    actor=actor,
                    details={"code": normalized},
                )
            ],
        )
