"""Value normalization for vendor payloads.

All helpers are total: malformed input yields None instead of raising.
"""

import math
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

_CURRENCY_NOISE = re.compile(r"[\s$,]")
_LABEL_NOISE = re.compile(r"[^a-z0-9]+")

TRUE_VALUES = {"true", "yes", "y", "1", "t", "on"}
FALSE_VALUES = {"false", "no", "n", "0", "f", "off"}


def normalize_label(label: Optional[str]) -> str:
    """
    Normalize a human-entered field label for comparison.

    "TYPE OF EXCHANGE", "Type-of exchange" and "type_of_exchange" all become
    "type of exchange".
    """
    if not label:
        return ""
    return " ".join(_LABEL_NOISE.sub(" ", str(label).lower()).split())


def parse_currency(raw_value: object) -> Optional[float]:
    """
    Parse a currency or rate value to float.

    Strips dollar signs, commas and whitespace; a trailing "%" is dropped.
    Parenthesized amounts are negative. Unparsable values return None.
    """
    if raw_value is None or isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, (int, float, Decimal)):
        number = float(raw_value)
        return number if math.isfinite(number) else None
    if not isinstance(raw_value, str):
        return None

    cleaned = _CURRENCY_NOISE.sub("", raw_value).rstrip("%")
    if not cleaned:
        return None

    negative = cleaned.startswith("(") and cleaned.endswith(")")
    if negative:
        cleaned = cleaned[1:-1]

    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    result = float(number)
    return -result if negative else result


def parse_bool(raw_value: object) -> Optional[bool]:
    """Parse yes/no/true/false/1/0 style values."""
    if raw_value is None:
        return None
    if isinstance(raw_value, bool):
        return raw_value
    if isinstance(raw_value, (int, float)):
        return bool(raw_value)
    normalized = str(raw_value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    return None


def strip_or_none(raw_value: object) -> Optional[str]:
    """Return a stripped string, or None for empty/absent values."""
    if raw_value is None:
        return None
    text = str(raw_value).strip()
    return text or None
