"""
Module: books_kernel.db.types
Responsibility: Monetary column type and the sanctioned rounding helpers.
Architecture position: Kernel > DB.  Imported by models/, domain/ and
    services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats.  Every amount is a Decimal and is stored through MoneyAmount,
      which keeps the exact decimal value on every backend.
    - round_money() is the only rounding used for document totals and tax.

Failure modes:
    - decimal.InvalidOperation from to_money() on non-numeric input.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any

from sqlalchemy import BigInteger, Numeric, String
from sqlalchemy.types import TypeDecorator

# Stored precision (fractional digits kept in the database)
MONEY_DECIMAL_PLACES = 9

# Presentation precision used for document totals, tax and tolerance
CENTS_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


class MoneyAmount(TypeDecorator):
    """
    Exact decimal amount.

    Uses Numeric(38, 9) where the backend has a native decimal type.  SQLite
    has none (its NUMERIC affinity goes through binary floating point), so
    there the canonical decimal string is stored instead.  Either way the
    value read back equals the value written, which keeps
    reverse(post(balance)) == balance exact.
    """

    impl = Numeric(38, MONEY_DECIMAL_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(38, MONEY_DECIMAL_PLACES))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = to_money(value)
        if dialect.name == "sqlite":
            return format(value, "f")
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value)) if not isinstance(value, Decimal) else value


Money = Annotated[Decimal, MoneyAmount()]

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Display names and descriptions
Name = Annotated[str, String(255)]
LongText = Annotated[str, String(4000)]


def to_money(value: Any) -> Decimal:
    """Coerce an int, str or Decimal to Decimal. Floats go through str()."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(
    value: Decimal,
    decimal_places: int = CENTS_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized with the given rounding mode.
    """
    quantizer = Decimal(10) ** -decimal_places
    return value.quantize(quantizer, rounding=rounding)
