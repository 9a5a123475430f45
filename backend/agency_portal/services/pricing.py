"""
Pricing aggregation for proposals and billing plans.

WHAT: Pure functions computing line totals, proposal value and deposits.

WHY: Every money figure in the lifecycle (proposal value, invoice amount,
billing plan total and deposit) comes from these functions, so there is a
single place where rounding and units are decided.

HOW: All amounts are integers in minor units (cents). The only conversion
to decimal major units is `to_major_units`, used for display and for the
invoice's derived `amount`.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Protocol

from agency_portal.core.exceptions import ValidationError


DEFAULT_DEPOSIT_PERCENT = 50
# Ten billion in major units; keeps every stored amount inside a BIGINT
MAX_LINE_TOTAL = 10**12
_CENTS = Decimal("0.01")


class PricedLine(Protocol):
    """Anything with an integer quantity and unit price (items, request rows)."""

    quantity: int
    unit_price: int


def line_total(quantity: int, unit_price: int) -> int:
    """
    Compute quantity × unit_price for one line.

    Raises:
        ValidationError: If quantity is not a positive integer, the price
            is negative, or the line total exceeds MAX_LINE_TOTAL
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(
            message="Invalid line item: quantity must be a positive integer",
            quantity=quantity,
        )
    if isinstance(unit_price, bool) or not isinstance(unit_price, int) or unit_price < 0:
        raise ValidationError(
            message="Invalid line item: unit price must be a non-negative integer",
            unit_price=unit_price,
        )
    total = quantity * unit_price
    if total > MAX_LINE_TOTAL:
        raise ValidationError(
            message="Invalid line item: line total is too large",
            quantity=quantity,
            unit_price=unit_price,
        )
    return total


def aggregate_value(items: Iterable[PricedLine]) -> int:
    """Proposal value: the sum of every item's line total."""
    return sum(line_total(item.quantity, item.unit_price) for item in items)


def deposit_amount(
    plan_type: str,
    total: int,
    deposit_percent: Optional[int] = None,
) -> int:
    """
    Upfront deposit for a billing plan.

    Only the split plan carries a deposit: total × percent / 100, rounded
    half-up to the cent. Every other plan returns 0.

    Raises:
        ValidationError: If the total is negative or the percent is outside 0..100
    """
    if total < 0:
        raise ValidationError(message="Billing total cannot be negative", total=total)

    # WHY: str Enum members compare equal to their value
    if plan_type != "split":
        return 0

    percent = DEFAULT_DEPOSIT_PERCENT if deposit_percent is None else deposit_percent
    if percent < 0 or percent > 100:
        raise ValidationError(
            message="Deposit percent must be between 0 and 100",
            deposit_percent=percent,
        )

    deposit = (Decimal(total) * Decimal(percent) / Decimal(100)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return min(int(deposit), total)


def to_major_units(amount_cents: int) -> Decimal:
    """Convert minor units to a two-decimal major-unit amount (4600_00 → 4600.00)."""
    return (Decimal(amount_cents) / Decimal(100)).quantize(_CENTS)


def format_amount(amount_cents: int, currency: str) -> str:
    """Human-readable amount for emails, e.g. "CAD 4,600.00"."""
    return f"{currency} {to_major_units(amount_cents):,.2f}"
