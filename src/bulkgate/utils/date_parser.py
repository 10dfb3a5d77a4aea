"""Date parsing utilities."""

import re
from datetime import date, datetime, timedelta
from typing import Any

from dateutil import parser as date_parser

# Spreadsheet serial 25569 is 1970-01-01, so day zero is 1899-12-30.
SERIAL_EPOCH = date(1899, 12, 30)
MAX_SERIAL = 2_958_465  # 9999-12-31

_SERIAL_TEXT = re.compile(r"^\d{1,7}(\.\d+)?$")


def serial_to_date(serial: float) -> date:
    """Convert a spreadsheet date serial number into a date.

    Fractional parts (time of day) are discarded.

    Raises:
        ValueError: If the serial is outside the representable range
    """
    days = int(serial)
    if days < 1 or days > MAX_SERIAL:
        raise ValueError(f"Date serial {serial} is out of range")
    return SERIAL_EPOCH + timedelta(days=days)


def parse_date(value: Any, dayfirst: bool = True) -> date:
    """Parse a cell value into a date object.

    Supports:
    - date and datetime objects (returned as dates)
    - spreadsheet serial numbers, as numbers or numeric text: 45306, "45306.0"
    - ISO text: "2024-01-15", "2024-01-15T10:30:00"
    - locale text: "15/01/2024", "15-01-2024", "January 15, 2024"

    Ambiguous numeric dates are read day-first unless ``dayfirst`` is False.

    Args:
        value: Raw cell value
        dayfirst: Whether "01/02/2024" means 1 February

    Returns:
        Date object

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Could not parse date {value!r}")
    if isinstance(value, (int, float)):
        return serial_to_date(value)

    text = str(value).strip()
    if not text:
        raise ValueError("Empty date string")

    if _SERIAL_TEXT.match(text):
        return serial_to_date(float(text))

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass

    try:
        return date_parser.parse(text, dayfirst=dayfirst).date()
    except (ValueError, TypeError, OverflowError) as e:
        raise ValueError(f"Could not parse date '{text}': {e}")
