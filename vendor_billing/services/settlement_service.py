"""
Subscription Settlement Service

Handles:
- Checkout: resolve the offer and create a gateway order (no writes)
- Verification: check the gateway signature, then activate the
  subscription and record the payment exactly once
- Referral reward crediting after a referred vendor pays
- Payment history and plan listing

A gateway payment id settles at most once. transaction_id and
gateway_order_id are unique on vendor_payments; losing that race on
insert returns the payment that won it.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_billing.config import Settings
from vendor_billing.core.exceptions import (
    ValidationError,
    NotFoundError,
    InvalidStateError,
    AuthenticityError,
    GatewayUnavailableError,
)
from vendor_billing.core.money import ZERO, to_decimal, to_minor_units, utcnow
from vendor_billing.models.coupon import PlanCoupon, CouponUsage
from vendor_billing.models.payment import VendorPayment, PaymentStatus, OfferType
from vendor_billing.models.plan import VendorPlan
from vendor_billing.models.subscription import VendorPlanSubscription, SubscriptionStatus
from vendor_billing.models.vendor import Vendor
from vendor_billing.services.offer_resolver import OfferResolver, OfferResolution
from vendor_billing.services.payment_gateway import RazorpayGateway
from vendor_billing.services.referral_service import ReferralService, RewardOutcome
from vendor_billing.services.side_effects import SideEffect, SideEffectKind, audit_intent

logger = logging.getLogger(__name__)

# Coupon claim attempts before settling at whatever offer is still valid
COUPON_CLAIM_ATTEMPTS = 2
# Whole-transaction attempts on a unique-key clash that is not a prior settlement
SETTLE_ATTEMPTS = 3


@dataclass
class CheckoutOrder:
    """Gateway order plus the discount it was priced with."""
    order_id: str
    amount: int  # In paise
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


@dataclass
class SettlementResult:
    payment: VendorPayment
    subscription: Optional[VendorPlanSubscription]
    already_settled: bool = False
    reward: Optional[RewardOutcome] = None
    side_effects: List[SideEffect] = field(default_factory=list)
    vendor: Optional[Vendor] = None
    plan: Optional[VendorPlan] = None


def generate_invoice_number(now=None) -> str:
    """INV-YYYY-MM-XXXX"""
    now = now or utcnow()
    return f"INV-{now.strftime('%Y-%m')}-{secrets.token_hex(2).upper()}"


class SettlementService:
    """Drives a subscription purchase from checkout to activation."""

    def __init__(self, db: AsyncSession, settings: Settings, gateway: RazorpayGateway):
        self.db = db
        self.settings = settings
        self.gateway = gateway

    # ========================================================================
    # Lookups
    # ========================================================================

    async def _get_vendor(self, vendor_id: uuid.UUID) -> Vendor:
        result = await self.db.execute(
            select(Vendor).where(Vendor.id == vendor_id).execution_options(populate_existing=True)
        )
        vendor = result.scalar_one_or_none()
        if not vendor:
            raise NotFoundError("Vendor not found", details={"vendor_id": str(vendor_id)})
        return vendor

    async def _get_plan(self, plan_id: uuid.UUID) -> VendorPlan:
        result = await self.db.execute(
            select(VendorPlan).where(VendorPlan.id == plan_id).execution_options(populate_existing=True)
        )
        plan = result.scalar_one_or_none()
        if not plan:
            raise NotFoundError("Plan not found", details={"plan_id": str(plan_id)})
        return plan

    async def _find_settled(self, payment_id: str, order_id: str) -> Optional[VendorPayment]:
        result = await self.db.execute(
            select(VendorPayment)
            .where(
                or_(
                    VendorPayment.transaction_id == payment_id,
                    VendorPayment.gateway_order_id == order_id,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ========================================================================
    # Checkout
    # ========================================================================

    async def initiate(
        self,
        vendor_id: uuid.UUID,
        plan_id: uuid.UUID,
        code: Optional[str] = None,
    ) -> CheckoutOrder:
        """
        Price the plan for this vendor and create a gateway order.

        Nothing is persisted; a failed or timed-out call may be retried.

        Raises:
            GatewayUnavailableError: gateway not configured or unreachable
            NotFoundError: vendor or plan missing
            ValidationError: plan not purchasable, or the entered code is not usable
        """
        if not self.gateway.is_configured:
            raise GatewayUnavailableError("Payment gateway is not configured")

        vendor = await self._get_vendor(vendor_id)
        plan = await self._get_plan(plan_id)
        if not plan.is_active:
            raise ValidationError("Plan is not available for purchase")

        base_amount = to_decimal(plan.price)
        if base_amount <= 0:
            raise ValidationError("Invalid plan price")

        resolution = await OfferResolver(self.db).resolve(code, vendor, plan, base_amount, strict=True)
        if resolution.error:
            raise ValidationError(resolution.error, details={"code": code})

        amount_minor = to_minor_units(resolution.net_amount)
        receipt = f"sub_{vendor.id.hex[:8]}_{secrets.token_hex(4)}"
        notes = {
            "vendor_id": str(vendor.id),
            "plan_id": str(plan.id),
            "plan_name": plan.name,
            "base_amount": str(resolution.base_amount),
            "discount_amount": str(resolution.discount_amount),
            "net_amount": str(resolution.net_amount),
        }
        if resolution.offer_type:
            notes["offer_type"] = resolution.offer_type
            notes["offer_code"] = resolution.offer_code or ""

        order = await self.gateway.create_order(
            amount_minor,
            self.settings.PAYMENT_CURRENCY,
            receipt,
            notes,
        )

        logger.info(
            f"Checkout order {order.id} for vendor {vendor.id} plan {plan.id}: "
            f"net={resolution.net_amount} offer={resolution.offer_type}"
        )

        return CheckoutOrder(
            order_id=order.id,
            amount=order.amount,
            currency=order.currency,
            key_id=self.gateway.key_id,
            vendor_id=vendor.id,
            plan_id=plan.id,
            base_amount=resolution.base_amount,
            discount_amount=resolution.discount_amount,
            net_amount=resolution.net_amount,
            offer_type=resolution.offer_type,
            offer_code=resolution.offer_code,
            referral_id=resolution.referral_id,
        )

    # ========================================================================
    # Verification
    # ========================================================================

    async def verify(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
        vendor_id: uuid.UUID,
        plan_id: uuid.UUID,
        code: Optional[str] = None,
        actor: Optional[Dict[str, Any]] = None,
    ) -> SettlementResult:
        """
        Settle a paid checkout.

        The signature is checked before anything is read or written. The
        offer is re-resolved leniently: a coupon that stopped being valid
        since checkout settles at full price instead of failing.

        Raises:
            ValidationError: missing gateway identifiers
            AuthenticityError: signature mismatch, or the payment was settled
                for a different vendor
            NotFoundError: vendor or plan missing
        """
        order_id = str(order_id or "").strip()
        payment_id = str(payment_id or "").strip()
        if not order_id or not payment_id or not signature:
            raise ValidationError("order_id, payment_id and signature are required")

        if not self.gateway.verify_signature(order_id, payment_id, signature):
            raise AuthenticityError("Invalid payment signature")

        prior = await self._find_settled(payment_id, order_id)
        if prior:
            return await self._already_settled(prior, vendor_id)

        for attempt in range(1, SETTLE_ATTEMPTS + 1):
            try:
                result = await self._settle(order_id, payment_id, vendor_id, plan_id, code)
                await self.db.commit()
                break
            except IntegrityError as e:
                await self.db.rollback()
                prior = await self._find_settled(payment_id, order_id)
                if prior:
                    logger.info(f"Payment {payment_id} settled concurrently; returning prior result")
                    return await self._already_settled(prior, vendor_id)
                logger.warning(f"Settlement attempt {attempt} for {payment_id} conflicted: {e}")
        else:
            raise InvalidStateError("Could not settle payment, please retry")

        payment = result.payment
        result.side_effects = self._settlement_effects(result, actor)

        if payment.offer_type == OfferType.REFERRAL.value:
            result.reward = await self._apply_referral_reward(result)

        logger.info(
            f"Payment {payment_id} settled: vendor={payment.vendor_id} net={payment.net_amount} "
            f"invoice={payment.invoice_number}"
        )
        return result

    async def _settle(
        self,
        order_id: str,
        payment_id: str,
        vendor_id: uuid.UUID,
        plan_id: uuid.UUID,
        code: Optional[str],
    ) -> SettlementResult:
        vendor = await self._get_vendor(vendor_id)
        plan = await self._get_plan(plan_id)

        resolution = await self._resolve_and_claim(code, vendor, plan)
        now = utcnow()

        await self.db.execute(
            update(VendorPlanSubscription)
            .where(
                VendorPlanSubscription.vendor_id == vendor.id,
                VendorPlanSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .values(status=SubscriptionStatus.INACTIVE.value, deactivated_at=now)
            .execution_options(synchronize_session=False)
        )

        duration_days = plan.effective_duration_days(self.settings.DEFAULT_PLAN_DURATION_DAYS)
        subscription = VendorPlanSubscription(
            id=uuid.uuid4(),
            vendor_id=vendor.id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE.value,
            start_date=now,
            end_date=now + timedelta(days=duration_days),
            plan_duration_days=duration_days,
        )
        self.db.add(subscription)
        await self.db.flush()

        payment = VendorPayment(
            id=uuid.uuid4(),
            vendor_id=vendor.id,
            plan_id=plan.id,
            subscription_id=subscription.id,
            amount=resolution.base_amount,
            discount_amount=resolution.discount_amount,
            net_amount=resolution.net_amount,
            currency=self.settings.PAYMENT_CURRENCY,
            description=f"Subscription: {plan.name}",
            status=PaymentStatus.COMPLETED.value,
            payment_method="Razorpay",
            transaction_id=payment_id,
            gateway_order_id=order_id,
            invoice_number=generate_invoice_number(now),
            payment_date=now,
            offer_type=resolution.offer_type,
            offer_code=resolution.offer_code,
            coupon_code=resolution.coupon_code,
            referral_id=resolution.referral_id,
        )
        self.db.add(payment)
        await self.db.flush()

        if resolution.coupon is not None:
            self.db.add(
                CouponUsage(
                    id=uuid.uuid4(),
                    coupon_id=resolution.coupon.id,
                    payment_id=payment.id,
                    vendor_id=vendor.id,
                    plan_id=plan.id,
                    discount_amount=resolution.discount_amount,
                    net_amount=resolution.net_amount,
                )
            )
            await self.db.flush()

        return SettlementResult(payment=payment, subscription=subscription, vendor=vendor, plan=plan)

    async def _resolve_and_claim(
        self,
        code: Optional[str],
        vendor: Vendor,
        plan: VendorPlan,
    ) -> OfferResolution:
        """
        Resolve the offer and, for a coupon, take one use of it.

        The claim is a conditional update; if another settlement took the
        last use first, the offer is resolved again.
        """
        resolver = OfferResolver(self.db)
        resolution = await resolver.resolve(code, vendor, plan, strict=False)

        for _ in range(COUPON_CLAIM_ATTEMPTS):
            if resolution.coupon is None or await self._claim_coupon(resolution.coupon):
                return resolution
            logger.info(f"Coupon {resolution.offer_code} lost its last use; re-resolving")
            resolution = await resolver.resolve(code, vendor, plan, strict=False)

        if resolution.coupon is not None:
            logger.warning(f"Coupon {resolution.offer_code} could not be claimed; settling at full price")
            return OfferResolution.full_price(resolution.base_amount)
        return resolution

    async def _claim_coupon(self, coupon: PlanCoupon) -> bool:
        result = await self.db.execute(
            update(PlanCoupon)
            .where(
                PlanCoupon.id == coupon.id,
                PlanCoupon.is_active == True,  # noqa: E712
                or_(PlanCoupon.max_uses == 0, PlanCoupon.used_count < PlanCoupon.max_uses),
            )
            .values(used_count=PlanCoupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _already_settled(self, payment: VendorPayment, vendor_id: uuid.UUID) -> SettlementResult:
        if str(payment.vendor_id) != str(vendor_id):
            logger.warning(
                f"Vendor {vendor_id} presented payment {payment.transaction_id} "
                f"settled for vendor {payment.vendor_id}"
            )
            raise AuthenticityError("Payment does not belong to this vendor")

        result = await self.db.execute(
            select(VendorPlanSubscription).where(VendorPlanSubscription.id == payment.subscription_id)
        )
        return SettlementResult(
            payment=payment,
            subscription=result.scalar_one_or_none(),
            already_settled=True,
        )

    async def _apply_referral_reward(self, result: SettlementResult) -> Optional[RewardOutcome]:
        """Credit the referrer. Failures are logged; the payment stands."""
        payment = result.payment
        try:
            outcome = await ReferralService(self.db).apply_reward_after_payment(
                payment.vendor_id,
                result.plan,
                payment,
                net_amount=payment.net_amount,
            )
            await self.db.commit()
            return outcome
        except Exception as e:
            logger.error(f"Referral reward for payment {payment.id} failed: {e}")
            await self.db.rollback()
            await self.db.refresh(payment)
            if result.subscription is not None:
                await self.db.refresh(result.subscription)
            return None

    def _settlement_effects(
        self,
        result: SettlementResult,
        actor: Optional[Dict[str, Any]],
    ) -> List[SideEffect]:
        payment = result.payment
        subscription = result.subscription
        vendor = result.vendor
        plan = result.plan

        return [
            audit_intent(
                "PAYMENT_COMPLETED",
                "vendor_payments",
                payment.id,
                actor=actor,
                details={
                    "vendor_id": str(vendor.id),
                    "plan_id": str(plan.id),
                    "amount": str(payment.amount),
                    "discount_amount": str(payment.discount_amount),
                    "net_amount": str(payment.net_amount),
                    "offer_type": payment.offer_type,
                    "offer_code": payment.offer_code,
                    "transaction_id": payment.transaction_id,
                    "invoice_number": payment.invoice_number,
                },
                description=f"Subscription {plan.name} activated for {vendor.company_name}",
            ),
            SideEffect(
                kind=SideEffectKind.INVOICE_EMAIL,
                payload={
                    "to_email": vendor.email,
                    "company_name": vendor.company_name,
                    "invoice_number": payment.invoice_number,
                    "plan_name": plan.name,
                    "amount": payment.amount,
                    "discount_amount": payment.discount_amount or ZERO,
                    "net_amount": payment.net_amount,
                    "offer_code": payment.offer_code,
                    "transaction_id": payment.transaction_id,
                    "start_date": subscription.start_date,
                    "end_date": subscription.end_date,
                },
            ),
            SideEffect(
                kind=SideEffectKind.SUBSCRIPTION_NOTIFICATION,
                payload={
                    "vendor_id": vendor.id,
                    "plan_name": plan.name,
                    "end_date": subscription.end_date,
                },
            ),
        ]

    # ========================================================================
    # Reads
    # ========================================================================

    async def payment_history(self, vendor_id: uuid.UUID, limit: int = 50) -> List[VendorPayment]:
        result = await self.db.execute(
            select(VendorPayment)
            .where(VendorPayment.vendor_id == vendor_id)
            .order_by(VendorPayment.payment_date.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def active_subscription(self, vendor_id: uuid.UUID) -> Optional[VendorPlanSubscription]:
        result = await self.db.execute(
            select(VendorPlanSubscription)
            .where(
                VendorPlanSubscription.vendor_id == vendor_id,
                VendorPlanSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .order_by(VendorPlanSubscription.start_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_plans(self) -> List[VendorPlan]:
        result = await self.db.execute(
            select(VendorPlan)
            .where(VendorPlan.is_active == True)  # noqa: E712
            .order_by(VendorPlan.price.asc())
        )
        return list(result.scalars().all())
