"""
Boundary normalization for amounts and dates.

Money enters and leaves the engine in major units (dollars) and is held
internally as integer minor units (cents). Conversion happens only here.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from reconciliation.errors import ValidationError

CENTS = Decimal("100")

DATE_FORMATS = [
    '%Y-%m-%d',
    '%m/%d/%Y',
    '%Y/%m/%d',
    '%d-%b-%Y',
]


def to_minor_units(amount: Any, field: str = "amount") -> int:
    """
    Convert a major-unit amount (int, float, Decimal or numeric string) to cents.

    Strings may carry a currency symbol and thousands separators.
    """
    if amount is None or isinstance(amount, bool):
        raise ValidationError(f"{field} must be numeric", field=field, value=amount)

    if isinstance(amount, str):
        cleaned = amount.strip().replace(",", "").replace("$", "")
        if not cleaned:
            raise ValidationError(f"{field} must be numeric", field=field, value=amount)
        amount = cleaned

    try:
        # str() keeps floats like 150.1 from turning into 150.09999...
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be numeric", field=field, value=amount)

    if not value.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field, value=amount)

    return int((value * CENTS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(cents: int) -> Decimal:
    """Convert cents to a two-place Decimal in major units."""
    return (Decimal(int(cents)) / CENTS).quantize(Decimal("0.01"))


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_datetime(value: Any, field: str = "date") -> datetime:
    """
    Normalize a date-like value to a timezone-aware UTC datetime.

    Handles:
    - datetime objects (naive values are taken as UTC)
    - date objects (midnight UTC)
    - ISO 8601 strings, including a trailing 'Z'
    - a few common bank export formats
    """
    if isinstance(value, datetime):
        return as_utc(value)

    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)

    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return as_utc(datetime.fromisoformat(text.replace('Z', '+00:00')))
        except ValueError:
            pass

        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue

    raise ValidationError(f"{field} is not a valid date", field=field, value=value)
