from datetime import time

from pydantic import BaseModel, Field

from consulting_slots.models.availability import AvailabilityTemplatePublic, Weekday


class SetDayRequest(BaseModel):
    enabled: bool
    start_time: time | None = None
    end_time: time | None = None


class BulkEnableRequest(BaseModel):
    days: list[Weekday] = Field(min_length=1)


class TemplateSettingsRequest(BaseModel):
    timezone: str | None = None
    default_capacity: int | None = Field(default=None, ge=1)
    slot_duration_minutes: int | None = Field(default=None, ge=1)
    buffer_minutes: int | None = Field(default=None, ge=0)
    # Generate one slot per day window instead of cutting it up
    whole_day_slots: bool = False


class TemplateResponse(BaseModel):
    success: bool = True
    message: str | None = None
    data: AvailabilityTemplatePublic
