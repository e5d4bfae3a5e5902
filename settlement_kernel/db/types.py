"""
Column types for money.

Amounts are ``Decimal`` with ``MONEY_DECIMAL_PLACES`` places everywhere.
PostgreSQL stores them as ``Numeric(38, 9)``.  SQLite has no decimal
storage (its NUMERIC affinity is a binary float), so there the value is
kept as fixed-width zero-padded text: exact, and ordered like the number
for comparisons in SQL.
"""

from decimal import ROUND_HALF_UP, Context, Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

MONEY_PRECISION = 38
MONEY_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)
_CONTEXT = Context(prec=MONEY_PRECISION)
# integer digits + "." + fraction
_TEXT_WIDTH = MONEY_PRECISION + 1


def round_money(value: Decimal | int | str, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """
    Quantize to the stored scale.

    Raises:
        decimal.InvalidOperation: More than 29 integer digits.
    """
    return Decimal(value).quantize(_QUANTUM, rounding=rounding, context=_CONTEXT)


class Money(TypeDecorator):
    """``Decimal`` in, ``Decimal`` out, on every dialect."""

    impl = Numeric(MONEY_PRECISION, MONEY_DECIMAL_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(_TEXT_WIDTH + 1))
        return dialect.type_descriptor(Numeric(MONEY_PRECISION, MONEY_DECIMAL_PLACES))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = round_money(str(value) if isinstance(value, float) else value)
        if dialect.name != "sqlite":
            return amount
        digits = format(amount.copy_abs(), f"0{_TEXT_WIDTH}f")
        return f"-{digits}" if amount < 0 else digits

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return round_money(value)
