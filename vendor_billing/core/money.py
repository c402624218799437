"""
Money and code helpers shared by the offer, settlement and wallet services.

Amounts are Decimal in the platform's base currency everywhere; they are
converted to minor units only at the gateway boundary.
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import datetime, timezone
from typing import Optional, Any


ZERO = Decimal("0.00")
CENT = Decimal("0.01")

_COUPON_DISALLOWED = re.compile(r"[^A-Z0-9_-]")
_REFERRAL_DISALLOWED = re.compile(r"[^A-Z0-9]")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Coerce DB/JSON values to Decimal, falling back on garbage."""
    if value is None:
        return default
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return default
    if not result.is_finite():
        return default
    return result


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def clamp(amount: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(amount, high))


def to_minor_units(amount: Decimal) -> int:
    """Gateway amount in paise; never below 1."""
    minor = (to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(1, int(minor))


def calculate_offer_amount(
    base_amount: Any,
    discount_type: Optional[str],
    value: Any,
    cap: Any = None,
) -> Decimal:
    """
    Discount for a PERCENT or FLAT offer, capped and clamped to [0, base].
    """
    base = to_decimal(base_amount)
    offer_value = to_decimal(value)
    if base <= 0 or offer_value <= 0:
        return ZERO

    if str(discount_type or "").upper() == "PERCENT":
        discount = base * offer_value / Decimal(100)
    else:
        discount = offer_value

    cap_value = to_decimal(cap)
    if cap_value > 0:
        discount = min(discount, cap_value)

    return clamp(quantize(discount), ZERO, base)


def normalize_coupon_code(value: Optional[str]) -> str:
    """Uppercase, no whitespace, only A-Z 0-9 _ -."""
    code = re.sub(r"\s+", "", str(value or "").strip().upper())
    return _COUPON_DISALLOWED.sub("", code)


def normalize_referral_code(value: Optional[str]) -> str:
    """Uppercase alphanumerics, at most 20 characters."""
    return _REFERRAL_DISALLOWED.sub("", str(value or "").strip().upper())[:20]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
