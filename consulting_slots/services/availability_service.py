from collections.abc import Iterable
from datetime import time

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from consulting_slots.core.config import settings
from consulting_slots.core.errors import ErrorKind, SlotError
from consulting_slots.models.availability import (
    AvailabilityTemplate,
    AvailabilityTemplatePublic,
    DaySchedule,
    DaySchedulePublic,
    Weekday,
)
from consulting_slots.services.timewindow import zone


def _check_day(weekday: Weekday, schedule: DaySchedule) -> None:
    if schedule.enabled and schedule.start_time >= schedule.end_time:
        raise SlotError(
            ErrorKind.INVALID_RANGE,
            f"End time must be after start time for {weekday.value}",
        )


def set_day(
    template: AvailabilityTemplate,
    weekday: Weekday,
    enabled: bool,
    start: time | None = None,
    end: time | None = None,
) -> AvailabilityTemplate:
    days = template.days()
    current = days[weekday]
    updated = DaySchedule(
        enabled=enabled,
        start_time=start if start is not None else current.start_time,
        end_time=end if end is not None else current.end_time,
    )
    _check_day(weekday, updated)
    days[weekday] = updated
    template.replace_days(days)
    return template


def bulk_enable(template: AvailabilityTemplate, weekdays: Iterable[Weekday]) -> AvailabilityTemplate:
    """Enable the given days with their stored hours; other days are left alone."""
    days = template.days()
    for weekday in set(weekdays):
        updated = days[weekday].model_copy(update={"enabled": True})
        _check_day(weekday, updated)
        days[weekday] = updated
    template.replace_days(days)
    return template


def disable_all(template: AvailabilityTemplate) -> AvailabilityTemplate:
    days = {day: schedule.model_copy(update={"enabled": False}) for day, schedule in template.days().items()}
    template.replace_days(days)
    return template


def update_settings(
    template: AvailabilityTemplate,
    timezone: str | None = None,
    default_capacity: int | None = None,
    slot_duration_minutes: int | None = None,
    buffer_minutes: int | None = None,
    clear_slot_duration: bool = False,
) -> AvailabilityTemplate:
    if timezone is not None:
        zone(timezone)
        template.timezone = timezone
    if default_capacity is not None:
        if default_capacity < 1:
            raise SlotError(ErrorKind.INVALID_RANGE, "Capacity must be at least 1")
        template.default_capacity = default_capacity
    if clear_slot_duration:
        template.slot_duration_minutes = None
    elif slot_duration_minutes is not None:
        if slot_duration_minutes <= 0:
            raise SlotError(ErrorKind.INVALID_RANGE, "Slot duration must be positive")
        template.slot_duration_minutes = slot_duration_minutes
    if buffer_minutes is not None:
        if buffer_minutes < 0:
            raise SlotError(ErrorKind.INVALID_RANGE, "Buffer must not be negative")
        template.buffer_minutes = buffer_minutes
    template.replace_days(template.days())
    return template


async def get_template(session: AsyncSession, specialist_id: str) -> AvailabilityTemplate | None:
    result = await session.execute(
        select(AvailabilityTemplate).where(AvailabilityTemplate.specialist_id == specialist_id)
    )
    return result.scalar_one_or_none()


async def get_or_create_template(session: AsyncSession, specialist_id: str) -> AvailabilityTemplate:
    template = await get_template(session, specialist_id)
    if template:
        return template
    template = AvailabilityTemplate(
        specialist_id=specialist_id,
        timezone=settings.default_timezone,
        default_capacity=settings.default_slot_capacity,
    )
    session.add(template)
    await session.flush()
    await session.refresh(template)
    return template


async def save_template(session: AsyncSession, template: AvailabilityTemplate) -> AvailabilityTemplate:
    session.add(template)
    await session.flush()
    await session.refresh(template)
    return template


def template_to_public(template: AvailabilityTemplate) -> AvailabilityTemplatePublic:
    return AvailabilityTemplatePublic(
        specialist_id=template.specialist_id,
        timezone=template.timezone,
        default_capacity=template.default_capacity,
        slot_duration_minutes=template.slot_duration_minutes,
        buffer_minutes=template.buffer_minutes,
        days={
            day: DaySchedulePublic(**schedule.model_dump())
            for day, schedule in template.days().items()
        },
        last_saved_at=template.last_saved_at,
    )
