"""
Module: station_ledger.db.types
Responsibility: Money column alias and the money primitives every other
    component uses: rounding, boundary parsing, summing and display
    formatting.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Two-decimal money.  round_money() is the ONLY sanctioned rounding
      function and uses ROUND_HALF_UP (ties away from zero), not banker's
      rounding.
    - No floats.  to_money() rejects float input; callers pass Decimal,
      int or a numeric string.
    - format_money() output is presentation only and is never parsed back
      into the ledger.

Failure modes:
    - ValidationError from to_money() on float, bool, NaN/Infinity,
      amounts of 10**16 or more, or unparseable input.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from sqlalchemy import Enum as SAEnum, Numeric, String

from station_ledger.exceptions import ValidationError

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

# 18 digits total, 2 decimal places
Money = Annotated[Decimal, Numeric(18, MONEY_DECIMAL_PLACES)]

# Invoice numbers and bank references
ShortCode = Annotated[str, String(64)]

# Free-text notes and descriptions
LongText = Annotated[str, String(4000)]

_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)
ZERO = Decimal("0.00")

# Largest magnitude that fits Numeric(18, 2)
MAX_MONEY = Decimal(10) ** (18 - MONEY_DECIMAL_PLACES)


def round_money(value: Decimal | int) -> Decimal:
    """
    Round a monetary value to two decimal places, ties away from zero.

    Args:
        value: Decimal (or int) amount.

    Returns:
        Decimal quantized to 0.01.
    """
    if not isinstance(value, Decimal):
        value = Decimal(value)
    return value.quantize(_QUANTUM, rounding=DEFAULT_ROUNDING)


def to_money(value: Any, field: str = "amount") -> Decimal:
    """
    Convert caller input into a ledger money value.

    This is the boundary where outside input becomes a ledger value, so
    the single rounding happens here.

    Args:
        value: Decimal, int or numeric string.
        field: Field name reported in the ValidationError.

    Returns:
        Rounded Decimal.

    Raises:
        ValidationError: If the value is a float, bool, non-finite, does
            not fit the money column or cannot be parsed.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(
            f"{field} must be a Decimal, int or numeric string, not {type(value).__name__}",
            field=field,
        )
    if isinstance(value, str):
        value = value.strip().replace(",", "")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"{field} is not a valid amount: {value!r}", field=field) from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    try:
        rounded = round_money(amount)
    except InvalidOperation as exc:
        raise ValidationError(f"{field} is too large: {value!r}", field=field) from exc
    if abs(rounded) >= MAX_MONEY:
        raise ValidationError(f"{field} is too large: {value!r}", field=field)
    return rounded


def sum_money(values: Iterable[Decimal]) -> Decimal:
    """Sum amounts, rounding each term and the result."""
    return round_money(sum((round_money(v) for v in values), ZERO))


def format_money(value: Decimal | int) -> str:
    """
    Format an amount for display: fixed two decimals, thousands separated.

    Example:
        format_money(Decimal("14364.375")) -> "14,364.38"
    """
    return f"{round_money(value):,.2f}"


def enum_type(enum_cls: type) -> SAEnum:
    """Store a str-valued Enum by value in a VARCHAR column."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=16,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
