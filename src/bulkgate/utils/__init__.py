"""Utility functions for bulkgate."""

from bulkgate.utils.date_parser import parse_date
from bulkgate.utils.number_parser import parse_integer, parse_numeric_identifier

__all__ = ["parse_date", "parse_integer", "parse_numeric_identifier"]
