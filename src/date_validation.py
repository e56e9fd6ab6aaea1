"""
Date parsing and range validation for submitted predictions.

All dates travel through the system as ISO 8601 calendar dates
(YYYY-MM-DD). Parsing is strict: two-digit years, timestamps and
coerced dates such as 2026-02-30 are rejected rather than normalized.
"""

import re
from datetime import date, datetime

from errors import ValidationError

DATE_REGEX = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")

DEFAULT_MIN_DATE = date(2000, 1, 1)
DEFAULT_MAX_DATE = date(2125, 12, 31)


def is_leap_year(year: int) -> bool:
    """Gregorian leap year rule."""
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def parse_date(value, field: str = "predicted_date") -> date:
    """
    Coerce a value into a calendar date.

    Args:
        value: A date, a datetime (reduced to its date) or a YYYY-MM-DD string
        field: Field name reported in the validation error

    Returns:
        The parsed date

    Raises:
        ValidationError: If the value is missing, malformed or not a real date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if not isinstance(value, str) or not value:
        raise ValidationError("Date is required in YYYY-MM-DD format.", field=field)

    match = DATE_REGEX.match(value.strip())
    if not match:
        raise ValidationError(
            f"Invalid date format: {value!r}. Expected YYYY-MM-DD.", field=field
        )

    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError as e:
        raise ValidationError(f"Invalid calendar date: {value}", field=field) from e


def validate_date_range(
    value: date,
    min_date: date = DEFAULT_MIN_DATE,
    max_date: date = DEFAULT_MAX_DATE,
    field: str = "predicted_date",
) -> date:
    """Reject dates outside the inclusive [min_date, max_date] window."""
    if value < min_date or value > max_date:
        raise ValidationError(
            f"Date must be between {min_date.isoformat()} and {max_date.isoformat()}.",
            field=field,
        )
    return value


def parse_prediction_date(
    value,
    min_date: date = DEFAULT_MIN_DATE,
    max_date: date = DEFAULT_MAX_DATE,
    field: str = "predicted_date",
) -> date:
    """Parse and range-check a submitted prediction date."""
    return validate_date_range(parse_date(value, field=field), min_date, max_date, field=field)
