"""
Shared coercion helpers for answer values and compare values.
"""

import math
import re
from datetime import date, datetime

from dateutil import parser as dateutil_parser

# Missing date components are filled from this anchor, never from today.
_DATE_DEFAULT = datetime(2000, 1, 1)

_NUMERIC_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")

TRUE_TOKENS = frozenset({"true", "yes"})
FALSE_TOKENS = frozenset({"false", "no"})


def parse_date(value) -> date | None:
    """Parse a date string (or date/datetime object) into a date.

    Supports ISO 8601 formats (YYYY-MM-DD) and datetime strings.
    Bare numbers are rejected so "5" is never read as a day of the month,
    and strings without a digit ("May") are never read as dates.

    Args:
        value: The value to parse.

    Returns:
        A date object, or None if parsing fails.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    if _NUMERIC_RE.match(value.strip()):
        return None
    # A date needs at least one digit; bare month or weekday names are text
    if not any(ch.isdigit() for ch in value):
        return None

    try:
        parsed = dateutil_parser.parse(value, default=_DATE_DEFAULT, fuzzy=False)
        # If the input is a datetime, extract just the date part
        if isinstance(parsed, datetime):
            return parsed.date()
        return parsed
    except (ValueError, TypeError, OverflowError):
        return None


def parse_number(value) -> float | None:
    """Coerce an int, float or numeric string to a float.

    Booleans, NaN and infinities are not numbers for comparison purposes.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and _NUMERIC_RE.match(value.strip()):
        number = float(value.strip())
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_bool(value) -> bool | None:
    """Read a boolean or a boolean-like token ("true"/"yes", "false"/"no")."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        token = value.strip().casefold()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
    return None


def fold_text(value: str) -> str:
    """Case-insensitive, whitespace-trimmed form of an option label."""
    return value.strip().casefold()
