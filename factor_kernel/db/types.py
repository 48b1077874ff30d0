"""
Module: factor_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for money and
    percentage columns.  Every model and service of the factor engine uses
    these definitions so that precision is identical system-wide.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and factor_modules.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats: monetary amounts and percentage rates are Decimal.
    - round_money() is the single rounding function for money (half-up).

Failure modes:
    - ValueError on a non-numeric string passed to money_from_str().
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String


# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for descriptions
LongText = Annotated[str, String(4000)]


MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0")


def money_from_str(value: str) -> Decimal:
    """
    Create a Money value from string.

    Raises:
        ValueError: If value cannot be converted to Decimal.
    """
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to ``decimal_places`` (half-up by default).

    All other code delegates rounding here so that snapshot totals, cost
    estimates and ledger amounts agree to the cent.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def sum_money(values) -> Decimal:
    """Sum Decimal values, treating None as zero."""
    total = ZERO
    for value in values:
        if value is not None:
            total += value
    return total
