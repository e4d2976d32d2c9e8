# Overview: Pure monetary computation rules (line totals, tax, discounts, average cost).

"""
Ledger primitives.

No side effects and no DB access. All arithmetic is done with Decimal at full
precision; rounding to the 2-digit display precision happens only through
``round_money`` when a value is shown, never inside a computation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .exceptions import InvalidLineError


ZERO = Decimal("0")
HUNDRED = Decimal("100")
DISPLAY_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class Amounts:
    untaxed: Decimal
    tax: Decimal
    total: Decimal

    def __add__(self, other: "Amounts") -> "Amounts":
        return Amounts(
            untaxed=self.untaxed + other.untaxed,
            tax=self.tax + other.tax,
            total=self.total + other.total,
        )


NO_AMOUNTS = Amounts(ZERO, ZERO, ZERO)


def to_decimal(value, field: str = "value") -> Decimal:
    """Coerce int/float/str/Decimal to Decimal; floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise InvalidLineError(f"{field} must be a number")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidLineError(f"{field} must be a finite number")
        value = repr(value)
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidLineError(f"{field} must be a number")


def round_money(value: Decimal) -> Decimal:
    """Display rounding (half-up, 2 places)."""
    return value.quantize(DISPLAY_QUANTUM, rounding=ROUND_HALF_UP)


def validate_line(quantity, unit_price) -> tuple[Decimal, Decimal]:
    """
    Quantity must be a finite number > 0, unit price finite and >= 0.

    Raises InvalidLineError otherwise.
    """
    qty = to_decimal(quantity, "quantity")
    price = to_decimal(unit_price, "unit_price")
    if not qty.is_finite() or qty <= 0:
        raise InvalidLineError(
            "Quantity must be a valid number greater than 0",
            details={"quantity": str(quantity)},
        )
    if not price.is_finite() or price < 0:
        raise InvalidLineError(
            "Unit price must be a valid number greater than or equal to 0",
            details={"unit_price": str(unit_price)},
        )
    return qty, price


def compute_line_total(unit_price, quantity, line_discount_pct=0, tax_rate=0) -> Amounts:
    """
    untaxed = unit_price * qty * (1 - line_discount_pct/100)
    tax     = untaxed * tax_rate/100
    total   = untaxed + tax
    """
    qty, price = validate_line(quantity, unit_price)
    discount = to_decimal(line_discount_pct or 0, "line_discount_pct")
    rate = to_decimal(tax_rate or 0, "tax_rate")

    untaxed = price * qty * (1 - discount / HUNDRED)
    tax = untaxed * rate / HUNDRED
    return Amounts(untaxed=untaxed, tax=tax, total=untaxed + tax)


def apply_global_discount(sum_untaxed, sum_tax, discount_pct, effective_tax_rate) -> Amounts:
    """
    Document-level discount.

    The untaxed base is rescaled and the tax is recomputed from the rescaled
    base at the nominal rate, so the discount changes the tax base rather than
    only the total. Without a discount the sums pass through unchanged.
    """
    untaxed = to_decimal(sum_untaxed, "amount_untaxed")
    tax = to_decimal(sum_tax, "amount_tax")
    discount = to_decimal(discount_pct or 0, "discount_pct")
    if not discount:
        return Amounts(untaxed=untaxed, tax=tax, total=untaxed + tax)

    rate = to_decimal(effective_tax_rate or 0, "tax_rate")
    untaxed = untaxed * (1 - discount / HUNDRED)
    tax = untaxed * rate / HUNDRED
    return Amounts(untaxed=untaxed, tax=tax, total=untaxed + tax)


def compute_weighted_average_cost(current_qty, current_cost, incoming_qty, incoming_cost) -> Decimal:
    """
    New purchase cost after receiving stock.

    If there is no stock on hand or no known cost, the incoming cost wins;
    otherwise (q0*c0 + q1*c1) / (q0 + q1).
    """
    incoming_cost = to_decimal(incoming_cost, "unit_price")
    current_qty = to_decimal(current_qty or 0, "stock_quantity")
    if current_qty <= 0 or current_cost is None:
        return incoming_cost

    current_cost = to_decimal(current_cost, "purchase_price")
    incoming_qty = to_decimal(incoming_qty, "quantity")
    return (current_qty * current_cost + incoming_qty * incoming_cost) / (current_qty + incoming_qty)
