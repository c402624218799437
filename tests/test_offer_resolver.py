from datetime import datetime, timedelta, timezone
from decimal import Decimal

from vendor_billing.services.offer_resolver import OfferResolver, COUPON_NOT_FOUND


class TestCoupons:
    async def test_flat_coupon_applies(self, session, vendor, plan, make_coupon):
        await make_coupon("SAVE10", "FLAT", "100")
        offer = await OfferResolver(session).resolve("save10", vendor, plan, strict=True)

        assert offer.error is None
        assert offer.offer_type == "COUPON"
        assert offer.offer_code == "SAVE10"
        assert offer.coupon_code == "SAVE10"
        assert offer.discount_amount == Decimal("100.00")
        assert offer.net_amount == Decimal("900.00")

    async def test_percent_coupon_over_hundred_clamped(self, session, vendor, plan, make_coupon):
        await make_coupon("HALFPLUS", "PERCENT", "120")
        offer = await OfferResolver(session).resolve("HALFPLUS", vendor, plan)

        assert offer.discount_amount == Decimal("1000.00")
        assert offer.net_amount == Decimal("0.00")

    async def test_unknown_code_strict_vs_lenient(self, session, vendor, plan):
        resolver = OfferResolver(session)

        strict = await resolver.resolve("NOPE", vendor, plan, strict=True)
        assert strict.error == COUPON_NOT_FOUND
        assert strict.net_amount == Decimal("1000.00")

        lenient = await resolver.resolve("NOPE", vendor, plan, strict=False)
        assert lenient.error is None
        assert lenient.offer_type is None
        assert lenient.net_amount == Decimal("1000.00")

    async def test_expired_coupon(self, session, vendor, plan, make_coupon):
        await make_coupon("OLD", expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        resolver = OfferResolver(session)

        strict = await resolver.resolve("OLD", vendor, plan, strict=True)
        assert strict.error == "Coupon expired"

        lenient = await resolver.resolve("OLD", vendor, plan)
        assert lenient.offer_type is None
        assert lenient.discount_amount == Decimal("0")

    async def test_exhausted_coupon(self, session, vendor, plan, make_coupon):
        await make_coupon("ONCE", max_uses=1, used_count=1)
        offer = await OfferResolver(session).resolve("ONCE", vendor, plan, strict=True)
        assert offer.error == "Coupon usage limit reached"

    async def test_unlimited_coupon_never_exhausted(self, session, vendor, plan, make_coupon):
        await make_coupon("FOREVER", max_uses=0, used_count=10_000)
        offer = await OfferResolver(session).resolve("FOREVER", vendor, plan, strict=True)
        assert offer.error is None
        assert offer.offer_type == "COUPON"

    async def test_inactive_coupon_is_not_found(self, session, vendor, plan, make_coupon):
        await make_coupon("PAUSED", is_active=False)
        offer = await OfferResolver(session).resolve("PAUSED", vendor, plan, strict=True)
        assert offer.error == COUPON_NOT_FOUND

    async def test_vendor_scope_by_code_email_or_id(
        self, session, vendor, other_vendor, plan, make_coupon
    ):
        await make_coupon("BYCODE", vendor_scope="vnd-001")
        await make_coupon("BYMAIL", vendor_scope="BILLING@ACME.EXAMPLE")
        await make_coupon("BYID", vendor_scope=str(vendor.id))
        resolver = OfferResolver(session)

        for code in ("BYCODE", "BYMAIL", "BYID"):
            assert (await resolver.resolve(code, vendor, plan, strict=True)).error is None
            rejected = await resolver.resolve(code, other_vendor, plan, strict=True)
            assert rejected.error == "Coupon not applicable for this vendor"

    async def test_plan_scope_by_name_and_legacy_any(self, session, vendor, plan, make_coupon):
        await make_coupon("GOLDONLY", plan_scope="gold")
        await make_coupon("SILVERONLY", plan_scope="Silver")
        await make_coupon("ANYPLAN", plan_scope="ANY", vendor_scope="all")
        resolver = OfferResolver(session)

        assert (await resolver.resolve("GOLDONLY", vendor, plan, strict=True)).error is None
        assert (await resolver.resolve("ANYPLAN", vendor, plan, strict=True)).error is None
        rejected = await resolver.resolve("SILVERONLY", vendor, plan, strict=True)
        assert rejected.error == "Coupon not applicable for this plan"

    async def test_zero_price_plan_has_no_offer(self, session, vendor, plan, make_coupon):
        await make_coupon("SAVE10")
        offer = await OfferResolver(session).resolve("SAVE10", vendor, plan, base_amount=Decimal("0"))
        assert offer.net_amount == Decimal("0")
        assert offer.offer_type is None


class TestReferralOffers:
    async def test_referral_offer_without_code(
        self, session, vendor, other_vendor, plan, referral_program
    ):
        await referral_program(referrer=other_vendor, referred=vendor)
        offer = await OfferResolver(session).resolve(None, vendor, plan, strict=True)

        assert offer.offer_type == "REFERRAL"
        assert offer.offer_code == "ACMEREF"
        assert offer.referral_id is not None
        assert offer.discount_amount == Decimal("100.00")
        assert offer.coupon_code is None

    async def test_referral_code_entered_as_coupon(
        self, session, vendor, other_vendor, plan, referral_program
    ):
        await referral_program(referrer=other_vendor, referred=vendor)
        offer = await OfferResolver(session).resolve("acme-ref", vendor, plan, strict=True)

        assert offer.error is None
        assert offer.offer_type == "REFERRAL"

    async def test_code_with_no_usable_characters_counts_as_empty(
        self, session, vendor, other_vendor, plan, referral_program
    ):
        await referral_program(referrer=other_vendor, referred=vendor)
        offer = await OfferResolver(session).resolve("  !!! ", vendor, plan, strict=True)

        assert offer.error is None
        assert offer.offer_type == "REFERRAL"
        assert offer.offer_code == "ACMEREF"

    async def test_mismatched_code_does_not_apply_referral(
        self, session, vendor, other_vendor, plan, referral_program
    ):
        await referral_program(referrer=other_vendor, referred=vendor)
        resolver = OfferResolver(session)

        strict = await resolver.resolve("SOMEONEELSE", vendor, plan, strict=True)
        assert strict.error == COUPON_NOT_FOUND

        lenient = await resolver.resolve("SOMEONEELSE", vendor, plan)
        assert lenient.offer_type is None
        assert lenient.net_amount == Decimal("1000.00")

    async def test_valid_coupon_wins_over_referral(
        self, session, vendor, other_vendor, plan, referral_program, make_coupon
    ):
        await referral_program(referrer=other_vendor, referred=vendor)
        await make_coupon("SAVE10", "FLAT", "50")
        offer = await OfferResolver(session).resolve("SAVE10", vendor, plan, strict=True)

        assert offer.offer_type == "COUPON"
        assert offer.referral_id is None
        assert offer.discount_amount == Decimal("50.00")

    async def test_disabled_program_has_no_referral_offer(self, session, vendor, plan):
        offer = await OfferResolver(session).resolve(None, vendor, plan, strict=True)
        assert offer.offer_type is None
        assert offer.error is None
        assert offer.net_amount == Decimal("1000.00")
