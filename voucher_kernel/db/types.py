"""
Module: voucher_kernel.db.types
Responsibility: Shared column types and the money arithmetic helpers used
    by every service that touches prices or balances.
Architecture position: Kernel > DB.  May be imported by models and services;
    MUST NOT import from either.

Numeric policy:
    - Wholesale prices, line costs and balances carry 4 decimal places
      (the provider's wholesale precision).
    - Face values carry 2 decimal places.
    - Sufficiency comparisons are made on integer minor units (cents) so
      that a balance exactly equal to the cost is never rejected by a
      float rounding artifact.
    CRITICAL: No floats.  Values arriving from JSON are converted through
    ``to_decimal`` (via ``str``) before any arithmetic.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Numeric, String

WHOLESALE_DECIMAL_PLACES = 4
FACE_VALUE_DECIMAL_PLACES = 2
MINOR_UNIT_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

# Wholesale price / cost / balance: 18 digits, 4 decimal places
WholesaleNumeric = Numeric(18, WHOLESALE_DECIMAL_PLACES)

# Face value (redeemable denomination): 12 digits, 2 decimal places
FaceNumeric = Numeric(12, FACE_VALUE_DECIMAL_PLACES)

# ISO 4217 currency code
CurrencyCode = String(3)


def to_decimal(value: Any, default: Decimal | None = None) -> Decimal:
    """
    Convert an upstream JSON number (int, float, str) to Decimal.

    Floats are routed through ``str`` so that 9.114 becomes
    Decimal("9.114") rather than its binary expansion.

    Raises:
        ValueError: If ``value`` is not numeric and no default is given.
    """
    if value is None or value == "":
        if default is not None:
            return default
        raise ValueError("Cannot convert empty value to Decimal")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError) as exc:
        if default is not None:
            return default
        raise ValueError(f"Not a numeric amount: {value!r}") from exc


def round_money(
    value: Decimal,
    decimal_places: int = WHOLESALE_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to ``decimal_places``.

    The only sanctioned rounding function in the engine.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return Decimal(value).quantize(quantum, rounding=rounding)


def round_wholesale(value: Decimal) -> Decimal:
    return round_money(value, WHOLESALE_DECIMAL_PLACES)


def round_face_value(value: Decimal) -> Decimal:
    return round_money(value, FACE_VALUE_DECIMAL_PLACES)


def to_minor_units(
    value: Decimal,
    decimal_places: int = MINOR_UNIT_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> int:
    """
    Convert a major-unit amount to integer minor units.

    Sufficiency checks pass ROUND_CEILING for the amount required and
    ROUND_FLOOR for the amount available, so a sub-cent shortfall is
    never rounded away.

    Example:
        to_minor_units(Decimal("12.3456")) -> 1235
        to_minor_units(Decimal("10.0049"), rounding=ROUND_CEILING) -> 1001
    """
    return int(round_money(value, decimal_places, rounding) * (Decimal(10) ** decimal_places))


def from_minor_units(
    value: int,
    decimal_places: int = MINOR_UNIT_DECIMAL_PLACES,
) -> Decimal:
    """
    Convert integer minor units back to a major-unit Decimal.

    Example:
        from_minor_units(1050) -> Decimal("10.50")
    """
    return Decimal(value).scaleb(-decimal_places)


def line_total(quantity: int, unit_price: Decimal, decimal_places: int) -> Decimal:
    """quantity x unit_price at the column's scale."""
    return round_money(Decimal(quantity) * unit_price, decimal_places)
