"""
Tests for KST date helpers
"""
import pytest

from conftest import fixed_clock, kst_ms
from date_utils import (
    add_days,
    day_boundaries_millis,
    day_of_week,
    epoch_millis_to_date_key,
    epoch_millis_to_iso,
    minute_of_day,
    next_date_for_day_of_week,
    parse_optional_date,
    past_dates_by_day_of_week,
)
from exceptions import InvalidDateKey, InvalidInput


def test_day_of_week_zero_is_sunday():
    assert day_of_week("2026-01-18") == 0
    assert day_of_week("2026-01-15") == 4
    assert day_of_week("2026-01-17") == 6


def test_past_dates_walk_back_to_target_weekday():
    # Thursday -> previous Fridays
    assert past_dates_by_day_of_week("2026-01-15", 5, 2) == ["2026-01-09", "2026-01-02"]
    # Thursday -> Wednesday is yesterday
    assert past_dates_by_day_of_week("2026-01-15", 3, 2) == ["2026-01-14", "2026-01-07"]
    # Same weekday never includes today
    assert past_dates_by_day_of_week("2026-01-15", 4, 1) == ["2026-01-08"]


def test_past_dates_rejects_bad_weekday():
    with pytest.raises(InvalidInput):
        past_dates_by_day_of_week("2026-01-15", 7)


def test_next_date_for_day_of_week():
    assert next_date_for_day_of_week("2026-01-15", 5) == "2026-01-16"
    assert next_date_for_day_of_week("2026-01-15", 4) == "2026-01-22"
    assert next_date_for_day_of_week("2026-01-31", 0) == "2026-02-01"


def test_day_boundaries_are_kst():
    start_ms, end_ms = day_boundaries_millis("2026-01-15")
    assert epoch_millis_to_iso(start_ms) == "2026-01-15T00:00:00+09:00"
    assert epoch_millis_to_iso(end_ms) == "2026-01-15T23:59:59+09:00"
    assert end_ms - start_ms == 24 * 60 * 60 * 1000 - 1
    assert epoch_millis_to_date_key(end_ms) == "2026-01-15"
    assert epoch_millis_to_date_key(end_ms + 1) == "2026-01-16"


def test_minute_of_day_includes_seconds():
    assert minute_of_day(kst_ms("2026-01-15", 10, 4, 30)) == pytest.approx(604.5)


def test_add_days_across_year():
    assert add_days("2025-12-31", 1) == "2026-01-01"
    assert add_days("2026-03-01", -1) == "2026-02-28"


def test_parse_optional_date_defaults_to_server_today():
    clock = fixed_clock("2026-01-15", 23, 59, 59)
    assert parse_optional_date(None, clock) == "2026-01-15"
    assert parse_optional_date("", clock) == "2026-01-15"
    assert parse_optional_date("2026-01-01", clock) == "2026-01-01"
    with pytest.raises(InvalidDateKey):
        parse_optional_date("2026-1-1", clock)


def test_server_clock():
    clock = fixed_clock("2026-12-31", 23, 30)
    assert clock.today_key() == "2026-12-31"
    assert clock.tomorrow_key() == "2027-01-01"
    assert clock.clock_time() == "23:30"
    assert clock.now_iso() == "2026-12-31T23:30:00+09:00"
