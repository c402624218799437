from datetime import datetime, timezone
from decimal import Decimal

from vendor_billing.core.money import (
    calculate_offer_amount,
    to_minor_units,
    normalize_coupon_code,
    normalize_referral_code,
    as_utc,
)
from vendor_billing.core.scope import GlobalScope, SpecificScope, parse_scope


class TestOfferAmount:
    def test_percent_discount(self):
        assert calculate_offer_amount(Decimal("1000"), "PERCENT", "10") == Decimal("100.00")

    def test_flat_discount_clamped_to_base(self):
        assert calculate_offer_amount(Decimal("500"), "FLAT", "800") == Decimal("500")

    def test_percent_over_hundred_clamped(self):
        assert calculate_offer_amount(Decimal("1000"), "PERCENT", "150") == Decimal("1000")

    def test_cap_limits_discount(self):
        assert calculate_offer_amount(Decimal("5000"), "PERCENT", "20", cap="250") == Decimal("250.00")

    def test_zero_or_garbage_values(self):
        assert calculate_offer_amount(Decimal("1000"), "FLAT", "0") == Decimal("0")
        assert calculate_offer_amount(Decimal("1000"), "FLAT", "abc") == Decimal("0")
        assert calculate_offer_amount(Decimal("0"), "PERCENT", "10") == Decimal("0")

    def test_lowercase_type(self):
        assert calculate_offer_amount(Decimal("200"), "percent", "25") == Decimal("50.00")


class TestMinorUnits:
    def test_rounds_half_up(self):
        assert to_minor_units(Decimal("900")) == 90000
        assert to_minor_units(Decimal("10.005")) == 1001

    def test_never_below_one(self):
        assert to_minor_units(Decimal("0")) == 1
        assert to_minor_units(Decimal("0.001")) == 1


class TestCodes:
    def test_coupon_code_normalized(self):
        assert normalize_coupon_code(" save 10! ") == "SAVE10"
        assert normalize_coupon_code("new_year-24") == "NEW_YEAR-24"
        assert normalize_coupon_code(None) == ""

    def test_referral_code_normalized(self):
        assert normalize_referral_code("acme-ref 01") == "ACMEREF01"
        assert len(normalize_referral_code("x" * 40)) == 20


class TestScope:
    def test_null_and_legacy_tokens_are_global(self):
        for raw in (None, "", "  ", "ANY", "all", "Global", "NULL", "none"):
            assert isinstance(parse_scope(raw), GlobalScope)

    def test_specific_scope_matches_case_insensitively(self):
        scope = parse_scope("VND-001")
        assert scope == SpecificScope("VND-001")
        assert scope.matches(["some-id", "vnd-001", None])
        assert not scope.matches(["VND-002", None, ""])

    def test_storage_round(self):
        assert parse_scope("ANY").to_storage() is None
        assert parse_scope("gold").to_storage() == "gold"


def test_as_utc_treats_naive_as_utc():
    naive = datetime(2024, 5, 1, 12, 0)
    assert as_utc(naive).tzinfo == timezone.utc
    assert as_utc(None) is None
