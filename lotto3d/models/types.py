"""Column types shared by the models package."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import BigInteger, DateTime, Integer
from sqlalchemy.types import TypeDecorator

# Use BigInteger by default, with a SQLite-safe Integer variant for autoincrement PKs.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")

CENT = Decimal("0.01")


def as_money(value: Any) -> Decimal:
    """Coerce ``value`` into a two-place :class:`~decimal.Decimal`.

    Accepts ``Decimal``, ``int`` and numeric strings. Floats are refused
    because they cannot represent centavo amounts exactly, and so are values
    with more than two decimal places.

    Raises
    ------
    TypeError
        If ``value`` is a float, bool or an unsupported type.
    ValueError
        If ``value`` is not a finite number with at most two decimal places.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError("money amounts must be Decimal, int or str, not float")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"invalid money amount: {value!r}") from exc
    else:
        raise TypeError(f"unsupported money type: {type(value).__name__}")

    if not amount.is_finite():
        raise ValueError(f"invalid money amount: {value!r}")
    quantized = amount.quantize(CENT)
    if quantized != amount:
        raise ValueError(f"money amounts allow at most two decimal places: {value!r}")
    return quantized


class Money(TypeDecorator):
    """Fixed-point amount stored as integer centavos.

    Keeping the stored value integral makes ``current_total + :amount`` style
    atomic updates exact on every backend, including SQLite which has no
    true decimal column type.
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> Optional[int]:
        if value is None:
            return None
        return int(as_money(value) * 100)

    def process_result_value(self, value: Any, dialect) -> Optional[Decimal]:
        if value is None:
            return None
        return (Decimal(int(value)) / 100).quantize(CENT)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always round-trips as UTC.

    SQLite drops ``tzinfo`` on read; values coming back naive are UTC by
    construction since every write is normalized here.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["ID_TYPE", "CENT", "as_money", "Money", "UTCDateTime", "utcnow"]
