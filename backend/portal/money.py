"""
Money helpers.

All amounts are integer cents. Anything derived from a percentage goes
through Decimal and is rounded ROUND_HALF_UP: whole cents for amounts,
two decimal places for percentages.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from portal.validation import ValidationError

# Flat provider-to-partner discount when nothing more specific is configured
DEFAULT_PARTNER_DISCOUNT_PCT = Decimal("10")

_CENT = Decimal("1")
_PCT_QUANT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr() keeps 12.5 as "12.5" rather than its binary expansion
        return Decimal(repr(value))
    return Decimal(value)


def apply_discount_pct(base_cents: int, discount_pct) -> int:
    """base - base * pct / 100, rounded to whole cents."""
    pct = to_decimal(discount_pct)
    discounted = Decimal(base_cents) * (Decimal(100) - pct) / Decimal(100)
    return int(discounted.quantize(_CENT, rounding=ROUND_HALF_UP))


def derive_partner_price_cents(base_cents: int) -> int:
    return apply_discount_pct(base_cents, DEFAULT_PARTNER_DISCOUNT_PCT)


def margin_pct(customer_revenue_cents: int, partner_cost_cents: int) -> float:
    """
    (customer - partner) / customer * 100 to two places; 0 when there is
    no customer revenue.
    """
    if customer_revenue_cents <= 0:
        return 0.0
    value = (
        (Decimal(customer_revenue_cents) - Decimal(partner_cost_cents))
        * Decimal(100)
        / Decimal(customer_revenue_cents)
    )
    return float(value.quantize(_PCT_QUANT, rounding=ROUND_HALF_UP))


def average_cents(total_cents: int, count: int) -> int:
    if count <= 0:
        return 0
    return int((Decimal(total_cents) / Decimal(count)).quantize(_CENT, rounding=ROUND_HALF_UP))


def validate_discount_pct(value) -> Decimal:
    """Partner discount rate as a percent in [0, 100]."""
    try:
        pct = to_decimal(value)
    except (ArithmeticError, TypeError, ValueError):
        raise ValidationError("discount_rate must be a number")
    if not pct.is_finite() or pct < 0 or pct > 100:
        raise ValidationError("discount_rate must be between 0 and 100")
    return pct.quantize(_PCT_QUANT, rounding=ROUND_HALF_UP)
