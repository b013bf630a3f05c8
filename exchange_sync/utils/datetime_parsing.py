"""Datetime parsing helpers for vendor payloads."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIMEZONE = "America/New_York"

DATETIME_FORMATS: list[str] = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %I:%M %p",
    "%m-%d-%Y %H:%M:%S",
    "%m-%d-%Y %H:%M",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
]

DATE_ONLY_FORMATS = {"%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%m/%d/%y", "%m-%d-%Y"}


@dataclass
class ParsedDatetime:
    value: datetime | None
    warnings: list[str]
    date_only: bool = False
    used_fallback_timezone: bool = False


def parse_datetime_with_timezone(raw_value: str, default_timezone: str | None) -> ParsedDatetime:
    """Parse datetime using the default timezone when no offset is present."""
    value = raw_value.strip()
    if not value:
        return ParsedDatetime(value=None, warnings=[])

    warnings: list[str] = []
    tz, used_fallback = _resolve_timezone(default_timezone, warnings)

    # Epoch timestamps (seconds or milliseconds)
    if re.fullmatch(r"\d{10,13}", value):
        ts = int(value)
        if len(value) == 13:
            ts = ts / 1000
        return ParsedDatetime(
            value=datetime.fromtimestamp(ts, tz=timezone.utc),
            warnings=warnings,
            used_fallback_timezone=used_fallback,
        )

    # ISO 8601 timestamps
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=tz)
        return ParsedDatetime(
            value=dt.astimezone(timezone.utc),
            warnings=warnings,
            used_fallback_timezone=used_fallback,
        )
    except ValueError:
        pass

    for fmt in DATETIME_FORMATS:
        try:
            dt = datetime.strptime(value, fmt)
            date_only = fmt in DATE_ONLY_FORMATS
            if date_only:
                warnings.append("Date-only value; assuming 12:00 local time.")
                dt = dt.replace(hour=12, minute=0, second=0)
            dt = dt.replace(tzinfo=tz)
            return ParsedDatetime(
                value=dt.astimezone(timezone.utc),
                warnings=warnings,
                date_only=date_only,
                used_fallback_timezone=used_fallback,
            )
        except ValueError:
            continue

    warnings.append(f"Unrecognized datetime format: {value}")
    return ParsedDatetime(value=None, warnings=warnings, used_fallback_timezone=used_fallback)


def parse_vendor_datetime(raw_value: object, default_timezone: str | None = None) -> datetime | None:
    """
    Coerce a vendor date/time value to an aware UTC datetime.

    Accepts strings in any format understood by `parse_datetime_with_timezone`,
    datetimes (naive values are taken as UTC), dates and epoch numbers.
    Returns None for anything absent or unparsable.
    """
    if raw_value is None or isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, datetime):
        if raw_value.tzinfo is None:
            return raw_value.replace(tzinfo=timezone.utc)
        return raw_value.astimezone(timezone.utc)
    if isinstance(raw_value, date):
        return datetime(raw_value.year, raw_value.month, raw_value.day, 12, tzinfo=timezone.utc)
    if isinstance(raw_value, float) and not math.isfinite(raw_value):
        return None
    if not isinstance(raw_value, (str, int, float)):
        return None
    try:
        if isinstance(raw_value, (int, float)):
            raw_value = str(int(raw_value))
        return parse_datetime_with_timezone(raw_value, default_timezone).value
    except (ValueError, OverflowError, OSError):
        return None


def _resolve_timezone(tz_name_in: str | None, warnings: list[str]) -> tuple[ZoneInfo, bool]:
    tz_name = tz_name_in or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(tz_name), False
    except (ZoneInfoNotFoundError, ValueError):
        warnings.append(f"Unknown timezone '{tz_name}', defaulting to {DEFAULT_TIMEZONE}.")
        return ZoneInfo(DEFAULT_TIMEZONE), True
