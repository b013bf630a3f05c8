"""Utility modules."""

from exchange_sync.utils.datetime_parsing import parse_vendor_datetime
from exchange_sync.utils.normalization import (
    normalize_label,
    parse_bool,
    parse_currency,
    strip_or_none,
)

__all__ = [
    # Datetime
    "parse_vendor_datetime",
    # Normalization
    "normalize_label",
    "parse_bool",
    "parse_currency",
    "strip_or_none",
]
