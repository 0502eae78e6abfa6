"""
Unit tests for the quincena calendar and the closure clock windows.
"""
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from studio_admin.periods.dates import (
    FIRST_HALF,
    SECOND_HALF,
    is_early_freeze_time,
    is_full_closure_time,
    is_last_day_of_period,
    nearest_european_midnight,
    next_period,
    normalize_period,
    period_bounds,
    period_to_close,
)

BOGOTA = ZoneInfo("America/Bogota")


def test_normalize_period_maps_any_day_to_start():
    assert normalize_period(date(2025, 3, 9)) == (date(2025, 3, 1), FIRST_HALF)
    assert normalize_period(date(2025, 3, 28)) == (date(2025, 3, 16), SECOND_HALF)


def test_invalid_period_type_rejected():
    with pytest.raises(ValueError):
        normalize_period(date(2025, 3, 9), "1-31")


def test_second_half_ends_on_real_last_day():
    assert period_bounds(date(2024, 2, 20)) == (date(2024, 2, 16), date(2024, 2, 29))
    assert period_bounds(date(2025, 4, 3)) == (date(2025, 4, 1), date(2025, 4, 15))


def test_period_to_close_on_closure_days():
    assert period_to_close(date(2025, 11, 1)) == (date(2025, 10, 16), SECOND_HALF)
    assert period_to_close(date(2025, 11, 16)) == (date(2025, 11, 1), FIRST_HALF)
    assert period_to_close(date(2026, 1, 1)) == (date(2025, 12, 16), SECOND_HALF)


def test_next_period_rolls_over_month_and_year():
    assert next_period(date(2025, 5, 1)) == (date(2025, 5, 16), SECOND_HALF)
    assert next_period(date(2025, 12, 16)) == (date(2026, 1, 1), FIRST_HALF)


def test_last_day_of_period():
    assert is_last_day_of_period(date(2025, 6, 15))
    assert is_last_day_of_period(date(2025, 6, 30))
    assert not is_last_day_of_period(date(2025, 6, 29))


def test_european_midnight_follows_dst():
    """Berlin midnight is 18:00 in Bogota during winter and 17:00 during summer."""
    winter = nearest_european_midnight(datetime(2025, 1, 15, 17, 50, tzinfo=BOGOTA))
    summer = nearest_european_midnight(datetime(2025, 7, 15, 16, 50, tzinfo=BOGOTA))

    assert (winter.hour, winter.minute) == (18, 0)
    assert (summer.hour, summer.minute) == (17, 0)


def test_early_freeze_window():
    assert is_early_freeze_time(datetime(2025, 1, 15, 18, 2, tzinfo=BOGOTA))
    assert is_early_freeze_time(datetime(2025, 7, 31, 16, 56, tzinfo=BOGOTA))
    assert not is_early_freeze_time(datetime(2025, 7, 15, 18, 0, tzinfo=BOGOTA))
    # Right time of day, wrong day of the period
    assert not is_early_freeze_time(datetime(2025, 1, 14, 18, 0, tzinfo=BOGOTA))


def test_full_closure_window():
    assert is_full_closure_time(datetime(2025, 11, 16, 0, 10, tzinfo=BOGOTA))
    assert is_full_closure_time(datetime(2025, 12, 1, 0, 0, tzinfo=BOGOTA))
    assert not is_full_closure_time(datetime(2025, 11, 16, 0, 20, tzinfo=BOGOTA))
    assert not is_full_closure_time(datetime(2025, 11, 17, 0, 5, tzinfo=BOGOTA))
