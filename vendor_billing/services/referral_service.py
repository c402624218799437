"""
Referral Program Service

Handles:
- Program settings and per-plan referral rules
- Referral offer for a referred vendor's checkout
- Referrer reward after the referred vendor's payment settles
- Referral profiles (shareable codes) and referral links
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_billing.core.exceptions import ValidationError, NotFoundError
from vendor_billing.core.money import (
    ZERO,
    to_decimal,
    quantize,
    calculate_offer_amount,
    normalize_referral_code,
    utcnow,
    as_utc,
)
from vendor_billing.models.payment import VendorPayment, PaymentStatus
from vendor_billing.models.plan import VendorPlan
from vendor_billing.models.referral import (
    ReferralProgramSettings,
    ReferralPlanRule,
    VendorReferralProfile,
    VendorReferral,
    ReferralStatus,
)
from vendor_billing.models.vendor import Vendor
from vendor_billing.models.wallet import LedgerEntryType
from vendor_billing.services.wallet_ledger import WalletLedger, reference_key

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 25


@dataclass(frozen=True)
class ProgramSettings:
    """Effective program switches; defaults apply when no GLOBAL row exists."""
    is_enabled: bool = False
    first_paid_plan_only: bool = True
    min_plan_amount: Decimal = ZERO
    min_cashout_amount: Decimal = Decimal("500.00")

    @classmethod
    def from_row(cls, row: Optional[ReferralProgramSettings]) -> "ProgramSettings":
        if row is None:
            return cls()
        return cls(
            is_enabled=bool(row.is_enabled),
            first_paid_plan_only=bool(row.first_paid_plan_only),
            min_plan_amount=to_decimal(row.min_plan_amount),
            min_cashout_amount=to_decimal(row.min_cashout_amount, Decimal("500.00")),
        )


@dataclass
class ReferralOffer:
    """Discount a referred vendor gets on a plan. Never persisted."""
    offer_code: str
    referral_id: uuid.UUID
    discount_amount: Decimal
    rule: ReferralPlanRule


@dataclass
class RewardOutcome:
    applied: bool
    reason: str
    reward_amount: Decimal = ZERO
    referral_id: Optional[uuid.UUID] = None
    referrer_vendor_id: Optional[uuid.UUID] = None
    ledger_key: Optional[str] = None


@dataclass
class PlanOfferPreview:
    plan_id: uuid.UUID
    plan_name: str
    base_amount: Decimal
    discount_amount: Decimal = ZERO
    net_amount: Decimal = ZERO
    discount_percent: Decimal = ZERO
    display_discount_percent: Decimal = ZERO
    configured_discount_type: Optional[str] = None
    configured_discount_value: Decimal = ZERO
    configured_discount_cap: Optional[Decimal] = None
    offer_type: Optional[str] = None
    offer_code: Optional[str] = None


class ReferralService:
    """Referral offers, rewards and links."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_vendor(self, vendor_id: uuid.UUID) -> Vendor:
        result = await self.db.execute(select(Vendor).where(Vendor.id == vendor_id))
        vendor = result.scalar_one_or_none()
        if not vendor:
            raise NotFoundError("Vendor not found", details={"vendor_id": str(vendor_id)})
        return vendor

    # ========================================================================
    # Settings and rules
    # ========================================================================

    async def get_program_settings(self) -> ProgramSettings:
        result = await self.db.execute(
            select(ReferralProgramSettings).where(ReferralProgramSettings.config_key == "GLOBAL")
        )
        return ProgramSettings.from_row(result.scalar_one_or_none())

    async def get_plan_rule(
        self,
        plan_id: uuid.UUID,
        at: Optional[datetime] = None,
    ) -> Optional[ReferralPlanRule]:
        """Most recently updated enabled rule for the plan, if valid at `at`."""
        result = await self.db.execute(
            select(ReferralPlanRule)
            .where(
                ReferralPlanRule.plan_id == plan_id,
                ReferralPlanRule.is_enabled == True,  # noqa: E712
            )
            .order_by(ReferralPlanRule.updated_at.desc())
            .limit(1)
        )
        rule = result.scalar_one_or_none()
        if not rule:
            return None

        at = as_utc(at) or utcnow()
        valid_from = as_utc(rule.valid_from)
        valid_to = as_utc(rule.valid_to)
        if valid_from and valid_from > at:
            return None
        if valid_to and valid_to < at:
            return None
        return rule

    # ========================================================================
    # Referral lookups
    # ========================================================================

    async def _referral_for_vendor(
        self,
        referred_vendor_id: uuid.UUID,
        statuses: List[str],
    ) -> Optional[VendorReferral]:
        result = await self.db.execute(
            select(VendorReferral)
            .where(
                VendorReferral.referred_vendor_id == referred_vendor_id,
                VendorReferral.status.in_(statuses),
            )
            .order_by(VendorReferral.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active_referral(self, referred_vendor_id: uuid.UUID) -> Optional[VendorReferral]:
        return await self._referral_for_vendor(referred_vendor_id, ReferralStatus.active())

    async def get_pending_referral(self, referred_vendor_id: uuid.UUID) -> Optional[VendorReferral]:
        return await self._referral_for_vendor(referred_vendor_id, [ReferralStatus.PENDING.value])

    async def has_prior_completed_payment(
        self,
        vendor_id: uuid.UUID,
        exclude_payment_id: Optional[uuid.UUID] = None,
    ) -> bool:
        query = select(VendorPayment.id).where(
            VendorPayment.vendor_id == vendor_id,
            VendorPayment.status == PaymentStatus.COMPLETED.value,
        )
        if exclude_payment_id:
            query = query.where(VendorPayment.id != exclude_payment_id)
        result = await self.db.execute(query.limit(1))
        return result.first() is not None

    # ========================================================================
    # Offers
    # ========================================================================

    async def get_offer_for_vendor(
        self,
        vendor: Vendor,
        plan: VendorPlan,
        at: Optional[datetime] = None,
    ) -> Optional[ReferralOffer]:
        """
        Referral discount the vendor is entitled to on this plan, or None.
        """
        program = await self.get_program_settings()
        if not program.is_enabled:
            return None

        if program.first_paid_plan_only and await self.has_prior_completed_payment(vendor.id):
            return None

        referral = await self.get_active_referral(vendor.id)
        if not referral:
            return None

        rule = await self.get_plan_rule(plan.id, at)
        if not rule:
            return None

        base_amount = to_decimal(plan.price)
        if base_amount <= 0 or base_amount < program.min_plan_amount:
            return None

        discount = calculate_offer_amount(
            base_amount, rule.discount_type, rule.discount_value, rule.discount_cap
        )
        if discount <= 0:
            return None

        return ReferralOffer(
            offer_code=referral.referral_code,
            referral_id=referral.id,
            discount_amount=discount,
            rule=rule,
        )

    async def preview_offers(self, vendor: Vendor) -> List[PlanOfferPreview]:
        """Referral discount per active plan, cheapest plan first."""
        program = await self.get_program_settings()
        result = await self.db.execute(
            select(VendorPlan)
            .where(VendorPlan.is_active == True)  # noqa: E712
            .order_by(VendorPlan.price.asc())
        )
        now = utcnow()

        previews = []
        for plan in result.scalars().all():
            base_amount = max(ZERO, to_decimal(plan.price))
            preview = PlanOfferPreview(plan_id=plan.id, plan_name=plan.name, base_amount=base_amount)

            offer = None
            if base_amount > 0 and program.is_enabled:
                try:
                    offer = await self.get_offer_for_vendor(vendor, plan, at=now)
                except Exception as e:
                    logger.warning(f"Referral offer lookup failed for plan {plan.id}: {e}")

            if offer:
                discount = min(offer.discount_amount, base_amount)
                rule = offer.rule
                preview.discount_amount = discount
                preview.configured_discount_type = str(rule.discount_type or "").upper() or None
                preview.configured_discount_value = max(ZERO, to_decimal(rule.discount_value))
                cap = to_decimal(rule.discount_cap)
                preview.configured_discount_cap = cap if cap > 0 else None
                preview.offer_type = "REFERRAL"
                preview.offer_code = offer.offer_code

            preview.net_amount = max(ZERO, base_amount - preview.discount_amount)
            if base_amount > 0:
                preview.discount_percent = quantize(preview.discount_amount / base_amount * 100)
            if preview.configured_discount_type == "PERCENT" and preview.configured_discount_value > 0:
                preview.display_discount_percent = preview.configured_discount_value
            else:
                preview.display_discount_percent = preview.discount_percent
            previews.append(preview)

        return previews

    # ========================================================================
    # Rewards
    # ========================================================================

    async def apply_reward_after_payment(
        self,
        referred_vendor_id: uuid.UUID,
        plan: VendorPlan,
        payment: VendorPayment,
        net_amount: Optional[Decimal] = None,
    ) -> RewardOutcome:
        """
        Credit the referrer's wallet for a settled referred payment.

        The ledger key ``ref_reward:<payment_id>`` makes a repeat call for
        the same payment a no-op. Does not commit.
        """
        if not referred_vendor_id or not payment or not plan:
            return RewardOutcome(applied=False, reason="missing_context")

        program = await self.get_program_settings()
        if not program.is_enabled:
            return RewardOutcome(applied=False, reason="program_disabled")

        if program.first_paid_plan_only:
            referral = await self.get_pending_referral(referred_vendor_id)
        else:
            referral = await self.get_active_referral(referred_vendor_id)
        if not referral:
            return RewardOutcome(applied=False, reason="no_eligible_referral")

        if program.first_paid_plan_only and await self.has_prior_completed_payment(
            referred_vendor_id, exclude_payment_id=payment.id
        ):
            self._reject(referral, "NOT_FIRST_PAID_PLAN")
            await self.db.flush()
            return RewardOutcome(applied=False, reason="not_first_paid_plan", referral_id=referral.id)

        base_amount = to_decimal(net_amount if net_amount is not None else payment.net_amount)
        if base_amount <= 0:
            return RewardOutcome(applied=False, reason="invalid_amount", referral_id=referral.id)
        if base_amount < program.min_plan_amount:
            return RewardOutcome(applied=False, reason="below_min_plan_amount", referral_id=referral.id)

        rule = await self.get_plan_rule(plan.id, payment.payment_date)
        if not rule:
            return RewardOutcome(applied=False, reason="rule_missing_or_disabled", referral_id=referral.id)

        reward = calculate_offer_amount(base_amount, rule.reward_type, rule.reward_value, rule.reward_cap)
        if reward <= 0:
            self._reject(referral, "ZERO_REWARD")
            await self.db.flush()
            return RewardOutcome(applied=False, reason="zero_reward", referral_id=referral.id)

        key = reference_key("ref_reward", payment.id)
        posted = await WalletLedger(self.db).credit(
            referral.referrer_vendor_id,
            reward,
            key,
            entry_type=LedgerEntryType.EARNED,
            payment_id=payment.id,
            referral_id=referral.id,
            meta={"referred_vendor_id": str(referred_vendor_id), "plan_id": str(plan.id)},
        )

        now = utcnow()
        referral.status = ReferralStatus.REWARDED.value
        referral.qualified_payment_id = payment.id
        referral.qualified_at = now
        referral.rewarded_at = now
        payment.referral_id = referral.id
        await self.db.flush()

        logger.info(
            f"Referral reward {reward} credited to vendor {referral.referrer_vendor_id} "
            f"for payment {payment.id} (applied={posted.applied})"
        )
        return RewardOutcome(
            applied=True,
            reason="rewarded" if posted.applied else "already_rewarded",
            reward_amount=reward,
            referral_id=referral.id,
            referrer_vendor_id=referral.referrer_vendor_id,
            ledger_key=key,
        )

    @staticmethod
    def _reject(referral: VendorReferral, reason: str) -> None:
        referral.status = ReferralStatus.REJECTED.value
        referral.rejection_reason = reason
        logger.info(f"Referral {referral.id} rejected: {reason}")

    # ========================================================================
    # Profiles and links
    # ========================================================================

    async def get_profile(self, vendor_id: uuid.UUID) -> Optional[VendorReferralProfile]:
        result = await self.db.execute(
            select(VendorReferralProfile).where(VendorReferralProfile.vendor_id == vendor_id)
        )
        return result.scalar_one_or_none()

    async def ensure_profile(self, vendor: Vendor) -> VendorReferralProfile:
        """Return the vendor's referral profile, generating a unique code if needed."""
        existing = await self.get_profile(vendor.id)
        if existing and existing.referral_code:
            return existing

        fallback = "V" + vendor.id.hex[:8].upper()
        seeds = [
            normalize_referral_code(vendor.vendor_code),
            normalize_referral_code(vendor.company_name)[:8],
            normalize_referral_code(vendor.owner_name)[:8],
        ]
        base_seed = next((seed for seed in seeds if seed), fallback)

        for attempt in range(MAX_CODE_ATTEMPTS):
            suffix = "" if attempt == 0 else str(1000 + secrets.randbelow(9000))
            code = normalize_referral_code(f"{base_seed}{suffix}")[:16]
            if not code:
                continue
            profile = VendorReferralProfile(
                id=uuid.uuid4(),
                vendor_id=vendor.id,
                referral_code=code,
                is_active=True,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(profile)
            except IntegrityError:
                # Code taken, or the profile was created concurrently
                concurrent = await self.get_profile(vendor.id)
                if concurrent:
                    return concurrent
                continue
            logger.info(f"Referral code {code} issued to vendor {vendor.id}")
            return profile

        raise ValidationError("Unable to generate unique referral code")

    async def link_referral(self, referred_vendor: Vendor, referral_code: str) -> VendorReferral:
        """
        Link the vendor to the vendor whose referral code it entered.

        Linking again to the same referrer returns the existing link.
        """
        code = normalize_referral_code(referral_code)
        if not code:
            raise ValidationError("referral_code is required")

        own_profile = await self.ensure_profile(referred_vendor)

        result = await self.db.execute(
            select(VendorReferralProfile).where(
                func.upper(VendorReferralProfile.referral_code) == code,
                VendorReferralProfile.is_active == True,  # noqa: E712
            )
        )
        referrer_profile = result.scalar_one_or_none()
        if not referrer_profile:
            raise NotFoundError("Invalid referral code")

        if referrer_profile.vendor_id == referred_vendor.id or own_profile.referral_code == code:
            raise ValidationError("Self referral is not allowed")

        result = await self.db.execute(
            select(VendorReferral).where(VendorReferral.referred_vendor_id == referred_vendor.id)
        )
        existing = result.scalar_one_or_none()
        if existing:
            if existing.referrer_vendor_id == referrer_profile.vendor_id:
                return existing
            raise ValidationError("Referral code already linked for this vendor")

        referral = VendorReferral(
            id=uuid.uuid4(),
            referrer_vendor_id=referrer_profile.vendor_id,
            referred_vendor_id=referred_vendor.id,
            referral_code=code,
            status=ReferralStatus.PENDING.value,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(referral)
        except IntegrityError:
            raise ValidationError("Referral code already linked for this vendor")

        logger.info(f"Vendor {referred_vendor.id} referred by {referrer_profile.vendor_id}")
        return referral

    async def referral_summary(self, vendor_id: uuid.UUID) -> Dict[str, int]:
        """Count of the vendor's referrals per status."""
        result = await self.db.execute(
            select(VendorReferral.status, func.count(VendorReferral.id))
            .where(VendorReferral.referrer_vendor_id == vendor_id)
            .group_by(VendorReferral.status)
        )
        summary = {status.value: 0 for status in ReferralStatus}
        for status, count in result.all():
            summary[status] = count
        return summary
