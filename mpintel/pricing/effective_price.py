"""Discount-adjusted unit price.

The effective unit price is what a buyer actually pays per unit after line
discounts, and is the figure every price comparison uses. Only material
lines with a unit price carry one.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from mpintel.models import LineType

_FOUR_PLACES = Decimal("0.0001")
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def _dec(value: Decimal | float | int | str | None) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def effective_price(
    unit_price: Decimal | float | int | str | None,
    discount_pct: Decimal | float | int | str | None = None,
    discount_amount: Decimal | float | int | str | None = None,
    quantity: Decimal | float | int | str | None = None,
) -> Decimal | None:
    """Compute the discount-adjusted unit price.

    A percentage discount takes precedence over an amount discount; an
    amount discount is spread over the quantity and ignored when the
    quantity is missing or zero. The result is floored at zero and rounded
    half-up to 4 decimal places.

    Examples:
        >>> effective_price(100, discount_pct=10)
        Decimal('90.0000')
        >>> effective_price(100, discount_amount=20, quantity=5)
        Decimal('96.0000')
        >>> effective_price(None) is None
        True
    """
    price = _dec(unit_price)
    if price is None:
        return None

    pct = _dec(discount_pct)
    amount = _dec(discount_amount)
    qty = _dec(quantity)

    if pct is not None and pct > _ZERO:
        result = price * (1 - pct / _HUNDRED)
    elif amount is not None and amount > _ZERO and qty is not None and qty > _ZERO:
        result = price - amount / qty
    else:
        result = price

    if result < _ZERO:
        result = _ZERO
    return result.quantize(_FOUR_PLACES, rounding=ROUND_HALF_UP)


def derive_effective_unit_price(
    line_type: LineType | str,
    unit_price: Decimal | float | int | str | None,
    discount_pct: Decimal | float | int | str | None = None,
    discount_amount: Decimal | float | int | str | None = None,
    quantity: Decimal | float | int | str | None = None,
) -> Decimal | None:
    """Effective price for a stored line; None for anything but material lines."""
    if LineType(line_type) is not LineType.MATERIAL:
        return None
    return effective_price(unit_price, discount_pct, discount_amount, quantity)
