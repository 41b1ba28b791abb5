"""
Business Day Calculator for the E-Filing engine.

Handles business-time arithmetic with holiday support.
Timers, extension maths and the red-list sweep all measure time
through these functions.

Key Rules:
- Non-working weekdays come from NON_WORKING_WEEKDAYS (Sat/Sun by default)
- Holidays come from the `holidays` table and are cached for an hour
- Business seconds are signed: a past due date gives a negative deficit
"""
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

from app.core.clock import ensure_utc
from app.core.config import settings
from app.core.database import get_supabase_client


SECONDS_PER_DAY = 86400

# Cache holidays to avoid repeated DB calls
_holiday_cache: Optional[frozenset[date]] = None
_holiday_cache_expiry: datetime | None = None


def _load_holidays(db=None) -> frozenset[date]:
    """Load holidays from database into cache."""
    global _holiday_cache, _holiday_cache_expiry

    # Refresh cache every hour
    now = datetime.now(timezone.utc)
    if _holiday_cache_expiry and now < _holiday_cache_expiry and _holiday_cache is not None:
        return _holiday_cache

    db = db or get_supabase_client()

    # Whole calendar: timers can span years and the table stays small
    rows = db.list_holidays()

    _holiday_cache = frozenset(
        date.fromisoformat(str(row["holiday_date"])[:10])
        for row in rows
    )
    _holiday_cache_expiry = now + timedelta(hours=1)

    return _holiday_cache


def load_holidays(db=None) -> frozenset[date]:
    """Public accessor for the cached holiday set."""
    return _load_holidays(db)


def clear_holiday_cache() -> None:
    """Drop cached holidays (after holiday CRUD, and between tests)."""
    global _holiday_cache, _holiday_cache_expiry
    _holiday_cache = None
    _holiday_cache_expiry = None


def is_weekend(check_date: date, non_working: Optional[Iterable[int]] = None) -> bool:
    """Check if date falls on a configured non-working weekday."""
    days = settings.non_working_weekday_set if non_working is None else set(non_working)
    return check_date.weekday() in days


def is_holiday(check_date: date, holidays: Optional[Iterable[date]] = None) -> bool:
    """Check if date is a holiday."""
    if holidays is None:
        holidays = _load_holidays()
    return check_date in holidays


def is_business_day(
    check_date: date,
    holidays: Optional[Iterable[date]] = None,
    non_working: Optional[Iterable[int]] = None
) -> bool:
    """
    Check if a date is a business day.

    Business day = Not a non-working weekday AND not holiday
    """
    if is_weekend(check_date, non_working):
        return False
    if is_holiday(check_date, holidays):
        return False
    return True


def add_business_days(
    start: datetime,
    num_days: int,
    holidays: Optional[Iterable[date]] = None,
    non_working: Optional[Iterable[int]] = None
) -> datetime:
    """
    Move `start` forward by N business days, keeping the time of day.

    Example:
        start = Friday 10:00
        num_days = 1
        result = Monday 10:00 (skips weekend)

    n=0 returns `start` unchanged.
    """
    if num_days <= 0:
        return start

    if holidays is None:
        holidays = _load_holidays()

    result = start
    days_counted = 0
    max_iterations = num_days * 3 + 30  # Safety limit
    iterations = 0

    while days_counted < num_days and iterations < max_iterations:
        result = result + timedelta(days=1)

        if is_business_day(result.date(), holidays, non_working):
            days_counted += 1

        iterations += 1

    return result


def business_days_before(
    target_date: date,
    num_days: int,
    holidays: Optional[Iterable[date]] = None,
    non_working: Optional[Iterable[int]] = None
) -> date:
    """
    Calculate N business days before a target date.

    Example:
        target_date = Monday April 15
        num_days = 1
        result = Friday April 12 (skips weekend)
    """
    if num_days <= 0:
        return target_date

    if holidays is None:
        holidays = _load_holidays()

    result_date = target_date
    days_counted = 0
    max_iterations = num_days * 3 + 30
    iterations = 0

    while days_counted < num_days and iterations < max_iterations:
        result_date = result_date - timedelta(days=1)

        if is_business_day(result_date, holidays, non_working):
            days_counted += 1

        iterations += 1

    return result_date


def get_business_days_between(
    start_date: date,
    end_date: date,
    holidays: Optional[Iterable[date]] = None,
    non_working: Optional[Iterable[int]] = None
) -> int:
    """
    Count business days between two dates (exclusive of end).
    """
    if start_date >= end_date:
        return 0

    if holidays is None:
        holidays = _load_holidays()

    count = 0
    current = start_date

    while current < end_date:
        if is_business_day(current, holidays, non_working):
            count += 1
        current += timedelta(days=1)

    return count


def business_seconds_between(
    start: datetime,
    end: datetime,
    holidays: Optional[Iterable[date]] = None,
    non_working: Optional[Iterable[int]] = None
) -> int:
    """
    Signed business seconds from `start` to `end`.

    Walks calendar days from the earlier instant, counting only the part of
    each day that falls on a business day. When `end` is before `start`
    the result is the negative of the reverse span.
    """
    start = ensure_utc(start)
    end = ensure_utc(end)

    if end == start:
        return 0
    if end < start:
        return -business_seconds_between(end, start, holidays, non_working)

    if holidays is None:
        holidays = _load_holidays()

    total = 0.0
    cursor = start

    while cursor < end:
        next_midnight = datetime.combine(
            cursor.date() + timedelta(days=1),
            datetime.min.time(),
            tzinfo=timezone.utc
        )
        segment_end = min(next_midnight, end)

        if is_business_day(cursor.date(), holidays, non_working):
            total += (segment_end - cursor).total_seconds()

        cursor = segment_end

    return int(total)


def format_remaining(seconds: Optional[int]) -> str:
    """
    Human readable form of a (possibly negative) remaining time.

    Examples:
        "2d 3h", "5h 12m", "overdue by 1d 2h"
    """
    if seconds is None:
        return "no deadline"

    overdue = seconds < 0
    remaining = abs(seconds)
    days, remainder = divmod(remaining, SECONDS_PER_DAY)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60

    if days:
        text = f"{days}d {hours}h"
    elif hours:
        text = f"{hours}h {minutes}m"
    else:
        text = f"{minutes}m"

    return f"overdue by {text}" if overdue else text
