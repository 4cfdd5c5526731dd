"""
Money Amounts

DESIGN DECISION: Every amount in the ledger is a Decimal quantised to
two places. Binary floats are rejected at the boundary instead of being
converted, so rounding drift can never creep into derived balances.

The annotated types below plug straight into Pydantic models:

    class Wallet(BaseModel):
        initial_balance: Money
"""

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from pydantic import AfterValidator, BeforeValidator


MONEY_PLACES = Decimal("0.01")
UNIT = Decimal("1")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """
    Convert a user-supplied value to a quantised Decimal.

    Accepts Decimal, int and numeric strings. Floats and booleans are
    refused outright.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(
            f"Amounts must be Decimal, int or str, not {type(value).__name__}"
        )
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Malformed amount: {value!r}")
    else:
        raise ValueError(f"Malformed amount: {value!r}")

    if not amount.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return amount.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def _require_non_negative(value: Decimal) -> Decimal:
    if value < 0:
        raise ValueError("Amount cannot be negative")
    return value


def _require_positive(value: Decimal) -> Decimal:
    if value <= 0:
        raise ValueError("Amount must be greater than zero")
    return value


Money = Annotated[Decimal, BeforeValidator(to_money)]
NonNegativeMoney = Annotated[
    Decimal, BeforeValidator(to_money), AfterValidator(_require_non_negative)
]
PositiveMoney = Annotated[
    Decimal, BeforeValidator(to_money), AfterValidator(_require_positive)
]


def signed_amount(kind, amount: Decimal) -> Decimal:
    """Balance effect of an entry: + for INCOME, - for EXPENSE."""
    # Compared by value so both the enum and its raw string work
    if getattr(kind, "value", kind) == "INCOME":
        return amount
    return -amount


def round_units(value: Decimal) -> Decimal:
    """Round to whole currency units, halves rounding up."""
    return value.quantize(UNIT, rounding=ROUND_HALF_UP)


def ceil_units(value: Decimal) -> Decimal:
    """Round up to whole currency units."""
    return value.quantize(UNIT, rounding=ROUND_CEILING)


def percent_of(part: Decimal, whole: Decimal) -> int:
    """Whole-number percentage of part in whole; 0 when whole is 0."""
    if whole == 0:
        return 0
    return int(round_units(part / whole * 100))
