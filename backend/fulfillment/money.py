"""
Money and quantity arithmetic.

Currency is always an integer count of minor units (satang). Ingredient
quantities are Decimals with three places. Floats never reach the ledger.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

QUANTITY_PLACES = Decimal("0.001")


def apply_rate_bps(amount_cents: int, rate_bps: int) -> int:
    """amount x rate (basis points), rounded half-up to the nearest minor unit."""
    if amount_cents < 0:
        return -apply_rate_bps(-amount_cents, rate_bps)
    return (amount_cents * rate_bps + 5000) // 10000


def to_cents(value) -> int:
    """
    Convert a major-unit amount ("890.00", 890, 890.0) to minor units.

    Goes through str() so provider floats like 1363.18 do not pick up binary
    noise before rounding.
    """
    if isinstance(value, bool):
        raise ValueError("amount must be numeric")
    try:
        amount = Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, AttributeError):
        raise ValueError(f"invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(amount_cents: int) -> str:
    sign = "-" if amount_cents < 0 else ""
    whole, frac = divmod(abs(amount_cents), 100)
    return f"{sign}{whole:,}.{frac:02d}"


def to_quantity(value) -> Decimal:
    """Normalize an ingredient quantity to a 3-place Decimal."""
    if isinstance(value, bool):
        raise ValueError("quantity must be numeric")
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, AttributeError):
            raise ValueError(f"invalid quantity: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"invalid quantity: {value!r}")
    return amount.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def quantity_cost_cents(quantity: Decimal, cost_per_unit_cents: int) -> int:
    """Cost of a fractional quantity, rounded half-up to a whole minor unit."""
    raw = to_quantity(quantity) * Decimal(cost_per_unit_cents)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
