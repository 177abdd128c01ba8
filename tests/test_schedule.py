"""Tests for start-time resolution and business-hours windows."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from skuld.lifecycle.schedule import (
    BusinessHours,
    end_time_reached,
    is_business_hours,
    next_business_window,
    resolve_start_time,
    skip_excluded_dates,
)
from skuld.models import ScheduleConfig

UTC_TZ = ZoneInfo("UTC")
SATURDAY = datetime(2026, 10, 17, 10, 0, tzinfo=UTC)
MONDAY_9 = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)
WEDNESDAY_NOON = datetime(2026, 10, 14, 12, 0, tzinfo=UTC)


class TestBusinessHours:
    def test_inside_window(self):
        assert is_business_hours(WEDNESDAY_NOON, UTC_TZ, BusinessHours())

    def test_end_hour_is_exclusive(self):
        assert not is_business_hours(
            WEDNESDAY_NOON.replace(hour=17), UTC_TZ, BusinessHours()
        )

    def test_weekend_is_closed(self):
        assert not is_business_hours(SATURDAY, UTC_TZ, BusinessHours())

    def test_excluded_date_is_closed(self):
        assert not is_business_hours(
            WEDNESDAY_NOON, UTC_TZ, BusinessHours(), excluded=[date(2026, 10, 14)]
        )

    def test_local_time_is_used(self):
        # 07:00 UTC is 09:00 in Berlin (CEST)
        berlin = ZoneInfo("Europe/Berlin")
        assert is_business_hours(WEDNESDAY_NOON.replace(hour=7), berlin, BusinessHours())


class TestNextBusinessWindow:
    def test_returns_moment_when_open(self):
        assert next_business_window(WEDNESDAY_NOON, UTC_TZ, BusinessHours()) == WEDNESDAY_NOON

    def test_saturday_moves_to_monday_morning(self):
        assert next_business_window(SATURDAY, UTC_TZ, BusinessHours()) == MONDAY_9

    def test_early_morning_moves_to_same_day_opening(self):
        early = WEDNESDAY_NOON.replace(hour=6)
        assert next_business_window(early, UTC_TZ, BusinessHours()) == early.replace(hour=9)

    def test_evening_moves_to_next_day(self):
        evening = WEDNESDAY_NOON.replace(hour=18)
        expected = (evening + timedelta(days=1)).replace(hour=9)
        assert next_business_window(evening, UTC_TZ, BusinessHours()) == expected

    def test_skips_excluded_monday(self):
        result = next_business_window(
            SATURDAY, UTC_TZ, BusinessHours(), excluded=[date(2026, 10, 19)]
        )
        assert result == MONDAY_9 + timedelta(days=1)

    def test_converts_local_opening_to_utc(self):
        new_york = ZoneInfo("America/New_York")
        result = next_business_window(SATURDAY, new_york, BusinessHours())
        # 09:00 EDT on Monday
        assert result == datetime(2026, 10, 19, 13, 0, tzinfo=UTC)

    def test_custom_hours(self):
        early = WEDNESDAY_NOON.replace(hour=6)
        result = next_business_window(early, UTC_TZ, BusinessHours(start_hour=7, end_hour=15))
        assert result == early.replace(hour=7)

    def test_all_days_excluded_raises(self):
        excluded = [SATURDAY.date() + timedelta(days=i) for i in range(400)]
        with pytest.raises(ValueError, match="exclude_dates"):
            next_business_window(SATURDAY, UTC_TZ, BusinessHours(), excluded)


class TestSkipExcludedDates:
    def test_allowed_day_unchanged(self):
        assert skip_excluded_dates(WEDNESDAY_NOON, UTC_TZ, []) == WEDNESDAY_NOON

    def test_moves_to_next_allowed_midnight(self):
        excluded = [date(2026, 10, 14), date(2026, 10, 15)]
        result = skip_excluded_dates(WEDNESDAY_NOON, UTC_TZ, excluded)
        assert result == datetime(2026, 10, 16, 0, 0, tzinfo=UTC)


class TestResolveStartTime:
    def test_no_schedule_starts_now(self):
        assert resolve_start_time(ScheduleConfig(), WEDNESDAY_NOON) is None

    def test_business_hours_on_saturday(self):
        schedule = ScheduleConfig(business_hours_only=True)
        assert resolve_start_time(schedule, SATURDAY) == MONDAY_9

    def test_business_hours_inside_window_starts_now(self):
        schedule = ScheduleConfig(business_hours_only=True)
        assert resolve_start_time(schedule, WEDNESDAY_NOON) is None

    def test_future_start_time(self):
        start = WEDNESDAY_NOON + timedelta(hours=2)
        schedule = ScheduleConfig(enabled=True, start_time=start)
        assert resolve_start_time(schedule, WEDNESDAY_NOON) == start

    def test_past_start_time_starts_now(self):
        schedule = ScheduleConfig(enabled=True, start_time=WEDNESDAY_NOON - timedelta(days=1))
        assert resolve_start_time(schedule, WEDNESDAY_NOON) is None

    def test_start_time_ignored_when_disabled(self):
        schedule = ScheduleConfig(start_time=WEDNESDAY_NOON + timedelta(hours=2))
        assert resolve_start_time(schedule, WEDNESDAY_NOON) is None

    def test_start_time_on_weekend_with_business_hours(self):
        schedule = ScheduleConfig(enabled=True, start_time=SATURDAY, business_hours_only=True)
        assert resolve_start_time(schedule, WEDNESDAY_NOON) == MONDAY_9

    def test_excluded_today_defers_to_tomorrow(self):
        schedule = ScheduleConfig(enabled=True, exclude_dates=[date(2026, 10, 14)])
        assert resolve_start_time(schedule, WEDNESDAY_NOON) == datetime(
            2026, 10, 15, tzinfo=UTC
        )

    def test_naive_start_time_uses_schedule_timezone(self):
        schedule = ScheduleConfig(
            enabled=True,
            timezone="Europe/Berlin",
            start_time=datetime(2026, 10, 14, 16, 0),
        )
        assert resolve_start_time(schedule, WEDNESDAY_NOON) == datetime(
            2026, 10, 14, 14, 0, tzinfo=UTC
        )


class TestEndTime:
    def test_reached(self):
        schedule = ScheduleConfig(enabled=True, end_time=WEDNESDAY_NOON)
        assert end_time_reached(schedule, WEDNESDAY_NOON)
        assert not end_time_reached(schedule, WEDNESDAY_NOON - timedelta(seconds=1))

    def test_ignored_when_disabled(self):
        schedule = ScheduleConfig(end_time=WEDNESDAY_NOON)
        assert not end_time_reached(schedule, WEDNESDAY_NOON + timedelta(days=1))
