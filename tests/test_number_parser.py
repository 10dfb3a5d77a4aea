"""Tests for numeric identifier parsing."""

import pytest

from bulkgate.utils.number_parser import parse_integer, parse_numeric_identifier, strip_key_separators


@pytest.mark.parametrize(
    "value, expected",
    [
        (30712345678, 30712345678),
        (30712345678.0, 30712345678),
        ("30712345678.0", 30712345678),
        ("30-71234567-8", 30712345678),
        ("30.712.345.678", 30712345678),
        ("No. 4521", 4521),
    ],
)
def test_parse_numeric_identifier(value, expected):
    """Test parsing identifiers in various formats."""
    assert parse_numeric_identifier(value) == expected


@pytest.mark.parametrize("value", ["abc", "", 12.5, False])
def test_parse_numeric_identifier_invalid(value):
    """Test that values without a whole number raise ValueError."""
    with pytest.raises(ValueError):
        parse_numeric_identifier(value)


def test_strip_key_separators():
    """Test removing the separators allowed in a tax id."""
    assert strip_key_separators(" 30-71234567-8 ") == "30712345678"
    assert strip_key_separators("30 712 345 678") == "30712345678"
    assert strip_key_separators("30712345678.0") == "30712345678"
    assert strip_key_separators("30/71234567_8") == "30712345678"


@pytest.mark.parametrize("value, expected", [(30, 30), ("30", 30), ("1,200", 1200), ("30.0", 30)])
def test_parse_integer(value, expected):
    """Test parsing plain integers."""
    assert parse_integer(value) == expected


@pytest.mark.parametrize("value", ["30.5", "thirty", True])
def test_parse_integer_invalid(value):
    """Test that non whole numbers raise ValueError."""
    with pytest.raises(ValueError):
        parse_integer(value)
