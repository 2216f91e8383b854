"""
Datetime Utilities Module

Utilities for reading the ISO 8601 timestamps returned by the Canvas API and
for the calendar arithmetic used by course classification and index freshness.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Optional, Union

logger = logging.getLogger("canvas_context.datetime_utils")


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_canvas_datetime(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Convert a Canvas timestamp to a timezone-aware datetime.

    Canvas returns strings like "2026-01-16T23:59:00Z" or
    "2026-01-16T23:59:00-05:00". Naive values are assumed to be UTC.

    Args:
        value: ISO 8601 string, datetime, or None

    Returns:
        Timezone-aware datetime, or None if the value is empty or unparseable

    Examples:
        >>> parse_canvas_datetime("2026-01-16T23:59:00Z")
        datetime.datetime(2026, 1, 16, 23, 59, tzinfo=datetime.timezone.utc)
    """
    if value is None or value == "" or value == "None":
        return None

    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            logger.warning(f"Failed to parse ISO 8601 datetime '{value}': {e}")
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso8601(dt: datetime) -> str:
    """
    Format a datetime as a UTC ISO 8601 string with 'Z' suffix.

    Examples:
        >>> to_iso8601(datetime(2026, 1, 17, 4, 59, tzinfo=timezone.utc))
        '2026-01-17T04:59:00Z'
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def add_months(dt: datetime, months: int) -> datetime:
    """
    Shift a datetime by whole calendar months, clamping the day to the target month.

    Examples:
        >>> add_months(datetime(2025, 3, 31), -1)
        datetime.datetime(2025, 2, 28, 0, 0)
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)
