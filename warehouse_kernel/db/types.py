"""
Module: warehouse_kernel.db.types
Responsibility: Quantity precision, the UTC timestamp column type, and
    quantity helpers.  Centralizes precision so that every model and service
    uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for stock quantities.  All quantities use Decimal with
      QUANTITY_DECIMAL_PLACES places.
    - Every timestamp read back from the database is timezone-aware UTC.

Failure modes:
    - ValueError on a non-numeric string passed to quantity_from().
    - ValueError when a naive datetime is bound to a UTCDateTime column.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


QUANTITY_DECIMAL_PLACES = 9


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that round-trips as UTC on every backend.

    PostgreSQL stores TIMESTAMP WITH TIME ZONE natively; SQLite drops the
    offset.  Binding normalizes to UTC and loading re-attaches UTC, so
    comparisons between freshly created and reloaded values always work.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def quantity_from(value: Decimal | int | str) -> Decimal:
    """
    Coerce a quantity to Decimal at the canonical precision.

    Floats are rejected; they cannot represent stock amounts exactly.

    Raises:
        TypeError: If value is a float or another unsupported type.
        ValueError: If value is a string that is not a number.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Quantity must not be {type(value).__name__}: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"Invalid quantity: {value!r}") from e
    else:
        raise TypeError(f"Unsupported quantity type: {type(value).__name__}")
    if not result.is_finite():
        raise ValueError(f"Quantity must be finite: {value!r}")
    return normalize_quantity(result)


def normalize_quantity(value: Decimal) -> Decimal:
    """Round to QUANTITY_DECIMAL_PLACES and strip trailing zeros."""
    quantum = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)
    rounded = value.quantize(quantum, rounding=ROUND_HALF_UP)
    if rounded == rounded.to_integral_value():
        return rounded.quantize(Decimal(1))
    return rounded.normalize()
