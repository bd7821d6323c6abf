"""Money in integer minor units (cents).

Amounts cross the API as decimals with two places and are stored as ints, so
ledger arithmetic is exact and sums never drift.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from marketplace.core.exceptions import BadRequestError

CENTS = Decimal("0.01")


def to_minor(amount: Decimal | str | int | float) -> int:
    """Decimal major units -> int cents, rounding half up."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise BadRequestError(f"Invalid amount: {amount}") from e
    if not value.is_finite():
        raise BadRequestError(f"Invalid amount: {amount}")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major(amount_minor: int) -> Decimal:
    return (Decimal(amount_minor) / 100).quantize(CENTS)


def format_minor(amount_minor: int | None) -> str | None:
    if amount_minor is None:
        return None
    return str(to_major(amount_minor))


def percent_of(amount_minor: int, percentage: Decimal | int | float) -> int:
    """round_half_up(amount * percentage / 100) in cents."""
    pct = Decimal(str(percentage))
    return int((Decimal(amount_minor) * pct / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
