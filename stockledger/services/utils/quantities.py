# stockledger/services/utils/quantities.py
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from stockledger.services.errors import InvalidQuantity

UTC = timezone.utc
QTY_PLACES = Decimal("0.0001")
ZERO = Decimal("0.0000")


def to_qty(value: Any, *, field: str = "quantity") -> Decimal:
    """Normalise to a 4-place Decimal (ROUND_HALF_UP). Rejects bool / NaN / garbage."""
    if value is None or isinstance(value, bool):
        raise InvalidQuantity(f"{field} must be numeric", context={"field": field, "value": value})
    try:
        if isinstance(value, Decimal):
            d = value
        elif isinstance(value, float):
            d = Decimal(repr(value))
        else:
            d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidQuantity(
            f"{field} must be numeric", context={"field": field, "value": str(value)}
        ) from None
    if not d.is_finite():
        raise InvalidQuantity(f"{field} must be finite", context={"field": field, "value": str(value)})
    return d.quantize(QTY_PLACES, rounding=ROUND_HALF_UP)


def positive_qty(value: Any, *, field: str = "quantity") -> Decimal:
    q = to_qty(value, field=field)
    if q <= 0:
        raise InvalidQuantity(f"{field} must be > 0", context={"field": field, "value": str(q)})
    return q


def db_qty(value: Any) -> Decimal:
    """Values read back from the DB (SQLite SUM returns float, NULL -> 0)."""
    if value is None:
        return ZERO
    return to_qty(value)


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def today() -> date:
    return utcnow().date()
