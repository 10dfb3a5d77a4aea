"""Numeric identifier parsing utilities."""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

# Spreadsheets hand integers back as "30712345678.0".
_TRAILING_ZERO_DECIMAL = re.compile(r"^(\d+)\.0+$")
_KEY_SEPARATORS = re.compile(r"[-\s_/\\.]")


def parse_numeric_identifier(value: Any) -> int:
    """Parse an identifier such as a tax id or category code into an int.

    Handles various formats:
    - 30712345678
    - 30712345678.0 (spreadsheet float)
    - "30-71234567-8"
    - "30.712.345.678"
    - "No. 4521"

    All non-digit characters are stripped before parsing.

    Args:
        value: Raw cell value

    Returns:
        Integer identifier

    Raises:
        ValueError: If no digits remain
    """
    if isinstance(value, bool):
        raise ValueError(f"Could not parse identifier {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Could not parse identifier {value!r}")
        return int(value)

    text = str(value).strip()
    match = _TRAILING_ZERO_DECIMAL.match(text)
    if match:
        text = match.group(1)

    digits = re.sub(r"\D", "", text)
    if not digits:
        raise ValueError(f"Could not parse identifier '{value}': no digits")
    return int(digits)


def strip_key_separators(value: Any) -> str:
    """Remove the separator characters allowed inside a tax id."""
    text = str(value).strip()
    match = _TRAILING_ZERO_DECIMAL.match(text)
    if match:
        text = match.group(1)
    return _KEY_SEPARATORS.sub("", text)


def parse_integer(value: Any) -> int:
    """Parse a plain integer such as a day count.

    Raises:
        ValueError: If the value is not a whole number
    """
    if isinstance(value, bool):
        raise ValueError(f"Could not parse integer {value!r}")
    if isinstance(value, int):
        return value

    text = str(value).strip().replace(",", "")
    try:
        number = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Could not parse integer '{value}'")
    if number != number.to_integral_value():
        raise ValueError(f"Could not parse integer '{value}': not a whole number")
    return int(number)
