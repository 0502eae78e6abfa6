"""
Period calendar in the studio's business timezone.

A month has two periods: "1-15" and "16-31", the latter ending on the real
last day of the month. A period is identified by its start date and type.
"""
import calendar
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from studio_admin.core.config import settings
from studio_admin.core.utils import business_tz

FIRST_HALF = "1-15"
SECOND_HALF = "16-31"
PERIOD_TYPES = (FIRST_HALF, SECOND_HALF)


def period_type_for(day: date) -> str:
    return FIRST_HALF if day.day <= 15 else SECOND_HALF


def last_day_of_month(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def normalize_period(period_date: date, period_type: Optional[str] = None) -> Tuple[date, str]:
    """Maps any date inside a period (and an optional explicit type) to its canonical key."""
    period_type = period_type or period_type_for(period_date)
    if period_type not in PERIOD_TYPES:
        raise ValueError(f"Invalid period type: {period_type}")
    start = period_date.replace(day=1 if period_type == FIRST_HALF else 16)
    return start, period_type


def period_bounds(period_date: date, period_type: Optional[str] = None) -> Tuple[date, date]:
    start, period_type = normalize_period(period_date, period_type)
    if period_type == FIRST_HALF:
        return start, start.replace(day=15)
    return start, last_day_of_month(start)


def current_period(today: date) -> Tuple[date, str]:
    return normalize_period(today)


def next_period(period_date: date, period_type: Optional[str] = None) -> Tuple[date, str]:
    start, period_type = normalize_period(period_date, period_type)
    if period_type == FIRST_HALF:
        return start.replace(day=16), SECOND_HALF
    return last_day_of_month(start) + timedelta(days=1), FIRST_HALF


def period_to_close(today: date) -> Tuple[date, str]:
    """
    The period a full close on `today` targets.
    Day 1 closes the previous month's second half and day 16 the current
    month's first half. Any other day targets the period that contains it.
    """
    if today.day == 1:
        previous = today - timedelta(days=1)
        return previous.replace(day=16), SECOND_HALF
    if today.day == 16:
        return today.replace(day=1), FIRST_HALF
    return current_period(today)


def last_ended_period(today: date) -> Tuple[date, str]:
    """The most recent period that ended before `today`."""
    start, _ = current_period(today)
    return normalize_period(start - timedelta(days=1))


def is_closure_day(today: date) -> bool:
    return today.day in (1, 16)


def is_last_day_of_period(today: date) -> bool:
    return today.day == 15 or today == last_day_of_month(today)


def nearest_european_midnight(now: datetime) -> datetime:
    """
    Midnight in the early-freeze timezone closest to `now`, expressed in the
    business timezone. Follows DST on both sides.
    """
    europe = ZoneInfo(settings.EARLY_FREEZE_TIMEZONE)
    local_europe = now.astimezone(europe)
    today_midnight = datetime.combine(local_europe.date(), time(0, 0), tzinfo=europe)
    tomorrow_midnight = datetime.combine(local_europe.date() + timedelta(days=1), time(0, 0), tzinfo=europe)
    nearest = min((today_midnight, tomorrow_midnight), key=lambda m: abs(m - now))
    return nearest.astimezone(business_tz())


def is_early_freeze_time(now: datetime, tolerance_minutes: Optional[int] = None) -> bool:
    """True on the last day of a period within the tolerance window around European midnight."""
    tolerance = timedelta(minutes=tolerance_minutes if tolerance_minutes is not None
                          else settings.EARLY_FREEZE_TOLERANCE_MINUTES)
    local = now.astimezone(business_tz())
    if not is_last_day_of_period(local.date()):
        return False
    return abs(local - nearest_european_midnight(local)) <= tolerance


def is_full_closure_time(now: datetime, window_minutes: Optional[int] = None) -> bool:
    """True on day 1 or 16 between 00:00 and 00:15 business time."""
    window = window_minutes if window_minutes is not None else settings.FULL_CLOSURE_WINDOW_MINUTES
    local = now.astimezone(business_tz())
    return is_closure_day(local.date()) and local.hour == 0 and local.minute <= window
