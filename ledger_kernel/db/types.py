"""
Module: ledger_kernel.db.types
Responsibility: Money helpers shared by models, services and parsers.
    round_money() is the only sanctioned rounding function for money.

CRITICAL: No floats anywhere in the ledger.  Amounts are Decimal end to end.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def money_from_str(value: str) -> Decimal:
    """Parse a money string into Decimal without rounding.

    Raises:
        ValueError: If the string is not a finite number.
    """
    try:
        result = Decimal(value.strip())
    except (InvalidOperation, AttributeError) as exc:
        raise ValueError(f"Invalid money value: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid money value: {value!r}")
    return result


def to_money(value: Decimal | int | str) -> Decimal:
    """Coerce a caller-supplied amount to Decimal.  Floats are refused."""
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be float")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    return money_from_str(value)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to the given precision (ROUND_HALF_UP)."""
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=rounding)
