from datetime import UTC, datetime, time
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_date_index(cls, i: int) -> "Weekday":
        """Inverse of date.weekday(): Monday is 0."""
        return list(cls)[i]


class DaySchedule(SQLModel):
    enabled: bool = False
    start_time: time = time(9, 0)
    end_time: time = time(17, 0)


def _default_pattern() -> dict[str, Any]:
    return {day.value: DaySchedule().model_dump(mode="json") for day in Weekday}


class AvailabilityTemplate(SQLModel, table=True):
    """A specialist's recurring weekly open hours, used only to generate slots."""

    __tablename__ = "availability_templates"
    id: int | None = Field(default=None, primary_key=True)
    specialist_id: str = Field(unique=True, index=True)
    timezone: str = "UTC"
    default_capacity: int = 1
    # When set, each day window is cut into slots of this length
    slot_duration_minutes: int | None = None
    buffer_minutes: int = 0
    weekly_pattern: dict[str, Any] = Field(
        default_factory=_default_pattern, sa_column=Column(JSON, nullable=False)
    )
    last_saved_at: datetime = Field(default_factory=_utc_naive_now)

    def day(self, weekday: Weekday) -> DaySchedule:
        raw = (self.weekly_pattern or {}).get(weekday.value)
        if raw is None:
            return DaySchedule()
        return DaySchedule.model_validate(raw)

    def days(self) -> dict[Weekday, DaySchedule]:
        return {day: self.day(day) for day in Weekday}

    def enabled_days(self) -> list[Weekday]:
        return [day for day, schedule in self.days().items() if schedule.enabled]

    def replace_days(self, days: dict[Weekday, DaySchedule]) -> None:
        # Assign a fresh dict so the JSON column is flagged dirty
        self.weekly_pattern = {day.value: days[day].model_dump(mode="json") for day in Weekday}
        self.last_saved_at = _utc_naive_now()


class DaySchedulePublic(SQLModel):
    enabled: bool
    start_time: time
    end_time: time


class AvailabilityTemplatePublic(SQLModel):
    specialist_id: str
    timezone: str
    default_capacity: int
    slot_duration_minutes: int | None = None
    buffer_minutes: int
    days: dict[Weekday, DaySchedulePublic]
    last_saved_at: datetime
