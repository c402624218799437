"""
Offer Resolver

Decides which single discount, if any, applies to a plan purchase:
a coupon the vendor entered, or the vendor's referral offer. Offers are
always re-derived from stored records; nothing the client sends about
a discount is trusted.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_billing.core.money import (
    ZERO,
    to_decimal,
    quantize,
    clamp,
    calculate_offer_amount,
    normalize_coupon_code,
    normalize_referral_code,
    utcnow,
    as_utc,
)
from vendor_billing.models.coupon import PlanCoupon
from vendor_billing.models.payment import OfferType
from vendor_billing.models.plan import VendorPlan
from vendor_billing.models.vendor import Vendor
from vendor_billing.services.referral_service import ReferralService

logger = logging.getLogger(__name__)

COUPON_NOT_FOUND = "Coupon not found or inactive"


@dataclass
class OfferResolution:
    """Result of resolving an offer for one checkout."""
    base_amount: Decimal
    discount_amount: Decimal = ZERO
    net_amount: Decimal = ZERO
    offer_type: Optional[str] = None
    offer_code: Optional[str] = None
    referral_id: Optional[uuid.UUID] = None
    coupon: Optional[PlanCoupon] = None
    error: Optional[str] = None

    @classmethod
    def full_price(cls, base_amount: Decimal, error: Optional[str] = None) -> "OfferResolution":
        return cls(base_amount=base_amount, net_amount=max(ZERO, base_amount), error=error)

    @property
    def coupon_code(self) -> Optional[str]:
        return self.offer_code if self.offer_type == OfferType.COUPON.value else None


def coupon_rejection_reason(
    coupon: PlanCoupon,
    vendor: Vendor,
    plan: VendorPlan,
    at: datetime,
) -> Optional[str]:
    """First failing coupon check, or None when the coupon applies."""
    expires_at = as_utc(coupon.expires_at)
    if expires_at and expires_at < at:
        return "Coupon expired"

    if coupon.is_exhausted:
        return "Coupon usage limit reached"

    if not coupon.vendor_scope.matches(vendor.scope_identifiers):
        return "Coupon not applicable for this vendor"

    if not coupon.plan_scope.matches([str(plan.id), plan.name]):
        return "Coupon not applicable for this plan"

    return None


class OfferResolver:
    """
    Resolves at most one offer per (vendor, plan, code, instant).

    In strict mode (checkout preview) a coupon failure is returned as an
    error. In lenient mode (settlement) every failure falls back to full
    price so a paying vendor is never blocked.
    """

    def __init__(self, db: AsyncSession, referral_service: Optional[ReferralService] = None):
        self.db = db
        self.referral_service = referral_service or ReferralService(db)

    async def find_coupon(self, code: str) -> Optional[PlanCoupon]:
        normalized = normalize_coupon_code(code)
        if not normalized:
            return None
        result = await self.db.execute(
            select(PlanCoupon).where(
                func.upper(PlanCoupon.code) == normalized,
                PlanCoupon.is_active == True,  # noqa: E712
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def resolve(
        self,
        code: Optional[str],
        vendor: Vendor,
        plan: VendorPlan,
        base_amount: Optional[Decimal] = None,
        strict: bool = False,
        at: Optional[datetime] = None,
    ) -> OfferResolution:
        base = quantize(to_decimal(plan.price if base_amount is None else base_amount))
        if base <= 0:
            return OfferResolution.full_price(ZERO)

        at = as_utc(at) or utcnow()
        raw_code = normalize_coupon_code(code)
        coupon_reason: Optional[str] = None

        if raw_code:
            coupon = await self.find_coupon(raw_code)
            if coupon:
                coupon_reason = coupon_rejection_reason(coupon, vendor, plan, at)
                if coupon_reason is None:
                    discount = calculate_offer_amount(base, coupon.discount_type, coupon.value)
                    return self._applied(base, discount, OfferType.COUPON, coupon.code, coupon=coupon)
                if strict:
                    return OfferResolution.full_price(base, error=coupon_reason)
            else:
                coupon_reason = COUPON_NOT_FOUND

        referral = await self._referral_offer(vendor, plan, at)
        if referral is not None:
            offer_code, referral_id, discount = referral
            code_matches = not raw_code or (
                normalize_referral_code(raw_code) == normalize_referral_code(offer_code)
            )
            if discount > 0 and code_matches:
                return self._applied(
                    base, discount, OfferType.REFERRAL, offer_code, referral_id=referral_id
                )

        if strict and raw_code:
            return OfferResolution.full_price(base, error=coupon_reason or COUPON_NOT_FOUND)

        return OfferResolution.full_price(base)

    async def _referral_offer(
        self,
        vendor: Vendor,
        plan: VendorPlan,
        at: datetime,
    ) -> Optional[Tuple[str, uuid.UUID, Decimal]]:
        try:
            offer = await self.referral_service.get_offer_for_vendor(vendor, plan, at=at)
        except Exception as e:
            logger.warning(f"Referral offer lookup failed for vendor {vendor.id}: {e}")
            return None
        if offer is None:
            return None
        return offer.offer_code, offer.referral_id, offer.discount_amount

    @staticmethod
    def _applied(
        base: Decimal,
        discount: Decimal,
        offer_type: OfferType,
        offer_code: str,
        coupon: Optional[PlanCoupon] = None,
        referral_id: Optional[uuid.UUID] = None,
    ) -> OfferResolution:
        discount = clamp(quantize(discount), ZERO, base)
        return OfferResolution(
            base_amount=base,
            discount_amount=discount,
            net_amount=max(ZERO, base - discount),
            offer_type=offer_type.value,
            offer_code=offer_code,
            referral_id=referral_id,
            coupon=coupon,
        )
