"""Pure interval helpers shared by slot creation, editing and generation."""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from consulting_slots.core.errors import ErrorKind, SlotError

if TYPE_CHECKING:
    from consulting_slots.models.availability import AvailabilityTemplate


def zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise SlotError(ErrorKind.INVALID_RANGE, f"Unknown timezone: {name}")


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def _from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


@dataclass(frozen=True)
class TimeWindow:
    date: date
    start_time: time
    end_time: time
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        if self.start_time >= self.end_time:
            raise SlotError(ErrorKind.INVALID_RANGE, "End time must be after start time")

    @property
    def duration_minutes(self) -> int:
        return _minutes(self.end_time) - _minutes(self.start_time)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time, tzinfo=zone(self.timezone))

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.date, self.end_time, tzinfo=zone(self.timezone))

    def today(self, now: datetime) -> date:
        """The calendar day `now` falls on in this window's zone."""
        return self.localize(now).date()

    def localize(self, instant: datetime) -> datetime:
        tz = zone(self.timezone)
        if instant.tzinfo is None:
            return instant.replace(tzinfo=tz)
        return instant.astimezone(tz)

    def covers(self, other: "TimeWindow") -> bool:
        """True if `other` lies entirely inside this window, compared as instants."""
        return self.starts_at <= other.starts_at and other.ends_at <= self.ends_at


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    """The half-open [start, end) ranges intersect.

    Windows in the same zone compare by date and wall clock; windows in
    different zones compare as instants.
    """
    if a.timezone != b.timezone:
        return a.starts_at < b.ends_at and b.starts_at < a.ends_at
    return a.date == b.date and a.start_time < b.end_time and b.start_time < a.end_time


def contains(window: TimeWindow, instant: datetime) -> bool:
    return window.starts_at <= window.localize(instant) < window.ends_at


def project_weekly(
    template: "AvailabilityTemplate", from_date: date, to_date: date
) -> list[TimeWindow]:
    """One window per enabled weekday occurring in [from_date, to_date]."""
    if from_date > to_date:
        raise SlotError(ErrorKind.INVALID_RANGE, "from_date must not be after to_date")
    from consulting_slots.models.availability import Weekday

    windows: list[TimeWindow] = []
    current = from_date
    while current <= to_date:
        schedule = template.day(Weekday.from_date_index(current.weekday()))
        if schedule.enabled:
            windows.append(
                TimeWindow(current, schedule.start_time, schedule.end_time, template.timezone)
            )
        current += timedelta(days=1)
    return windows


def split_window(
    window: TimeWindow, duration_minutes: int, buffer_minutes: int = 0
) -> list[TimeWindow]:
    """Cut a window into consecutive slots; a short remainder at the end is dropped."""
    if duration_minutes <= 0 or buffer_minutes < 0:
        raise SlotError(ErrorKind.INVALID_RANGE, "Slot duration must be positive")
    start = _minutes(window.start_time)
    end = _minutes(window.end_time)
    windows: list[TimeWindow] = []
    while start + duration_minutes <= end:
        windows.append(
            TimeWindow(
                window.date,
                _from_minutes(start),
                _from_minutes(start + duration_minutes),
                window.timezone,
            )
        )
        start += duration_minutes + buffer_minutes
    return windows
