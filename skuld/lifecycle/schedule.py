"""Start-time resolution: explicit start times, business hours, excluded dates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Collection
    from zoneinfo import ZoneInfo

    from skuld.models.config import ScheduleConfig

# Upper bound on the day scan; a year of excluded weekdays means a broken config.
_MAX_SCAN_DAYS = 366


@dataclass(frozen=True)
class BusinessHours:
    """Working window, Monday-Friday, ``[start_hour, end_hour)`` local time."""

    start_hour: int = 9
    end_hour: int = 17

    def contains(self, local: datetime) -> bool:
        return local.weekday() < 5 and self.start_hour <= local.hour < self.end_hour


def _is_workday(day: date, excluded: Collection[date]) -> bool:
    return day.weekday() < 5 and day not in excluded


def is_business_hours(
    moment: datetime,
    tz: ZoneInfo,
    hours: BusinessHours,
    excluded: Collection[date] = (),
) -> bool:
    local = moment.astimezone(tz)
    return hours.contains(local) and local.date() not in excluded


def next_business_window(
    moment: datetime,
    tz: ZoneInfo,
    hours: BusinessHours,
    excluded: Collection[date] = (),
) -> datetime:
    """Return *moment* if it is inside business hours, else the next window opening."""
    if is_business_hours(moment, tz, hours, excluded):
        return moment

    local = moment.astimezone(tz)
    day = local.date()
    if not (_is_workday(day, excluded) and local.hour < hours.start_hour):
        day += timedelta(days=1)
    for _ in range(_MAX_SCAN_DAYS):
        if _is_workday(day, excluded):
            opening = datetime.combine(day, time(hours.start_hour), tzinfo=tz)
            return opening.astimezone(UTC)
        day += timedelta(days=1)
    raise ValueError("No business day found within a year; check exclude_dates")


def skip_excluded_dates(moment: datetime, tz: ZoneInfo, excluded: Collection[date]) -> datetime:
    """Move *moment* to local midnight of the first non-excluded day."""
    local = moment.astimezone(tz)
    day = local.date()
    if day not in excluded:
        return moment
    for _ in range(_MAX_SCAN_DAYS):
        day += timedelta(days=1)
        if day not in excluded:
            return datetime.combine(day, time(0), tzinfo=tz).astimezone(UTC)
    raise ValueError("No allowed day found within a year; check exclude_dates")


def resolve_start_time(
    schedule: ScheduleConfig,
    now: datetime,
    hours: BusinessHours | None = None,
) -> datetime | None:
    """Return when a start requested at *now* may actually happen.

    None means "start now". A datetime means the start must be deferred
    until then.
    """
    hours = hours or BusinessHours()
    candidate = now
    if schedule.enabled and schedule.start_time is not None and schedule.start_time > now:
        candidate = schedule.start_time

    if schedule.business_hours_only:
        candidate = next_business_window(candidate, schedule.tz, hours, schedule.exclude_dates)
    elif schedule.enabled and schedule.exclude_dates:
        candidate = skip_excluded_dates(candidate, schedule.tz, schedule.exclude_dates)

    return candidate if candidate > now else None


def end_time_reached(schedule: ScheduleConfig, now: datetime) -> bool:
    return schedule.enabled and schedule.end_time is not None and now >= schedule.end_time
