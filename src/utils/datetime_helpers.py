"""
Standardized Date/Time Handling Utilities

All progress state uses one fixed day boundary: the UTC calendar day.
Streaks, daily report rows and weekly windows are all keyed off
today_utc(), never off the server's local time.

CRITICAL RULES:
- Always store datetimes as timezone-aware UTC (use now_utc() / to_utc())
- Calendar days are UTC days (use today_utc())
- Never mix naive and aware datetimes
"""

import logging
import re
from datetime import datetime, date, timedelta, timezone
from typing import Tuple, Union

from src.exceptions import InvalidDateError

logger = logging.getLogger(__name__)

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Weekly summaries cover today plus the six days before it
WEEK_LENGTH_DAYS = 7


def now_utc() -> datetime:
    """
    Get current datetime in UTC (timezone-aware)

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(timezone.utc)


def today_utc() -> date:
    """Current calendar day at the UTC day boundary"""
    return now_utc().date()


def to_utc(dt: datetime) -> datetime:
    """
    Convert datetime to UTC for storage

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        logger.debug(f"Received naive datetime, assuming UTC: {dt}")
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_report_date(value: Union[str, date]) -> date:
    """
    Parse a report date (strict YYYY-MM-DD)

    Args:
        value: ISO date string or an existing date

    Returns:
        date object

    Raises:
        InvalidDateError: If the value is not a real YYYY-MM-DD calendar date
    """
    if isinstance(value, datetime):
        return to_utc(value).date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _ISO_DATE_RE.match(value):
        raise InvalidDateError(value)
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as e:
        # Matches the pattern but is not a calendar date (e.g. 2024-02-30)
        raise InvalidDateError(value, cause=e)


def week_window(end: date) -> Tuple[date, date]:
    """Inclusive (start, end) range for the week ending on *end*"""
    return end - timedelta(days=WEEK_LENGTH_DAYS - 1), end
