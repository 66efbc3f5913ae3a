import datetime as dt
from datetime import time

from pydantic import BaseModel, Field

from consulting_slots.models.slot import SlotPublic, SlotStatus


class CreateSlotRequest(BaseModel):
    # Defaults to the caller; if given it must be the caller
    specialist_id: str | None = None
    date: dt.date
    start_time: time
    end_time: time
    total_capacity: int | None = Field(default=None, ge=1)
    timezone: str | None = None
    notes: str | None = None


class EditSlotRequest(BaseModel):
    date: dt.date | None = None
    start_time: time | None = None
    end_time: time | None = None
    timezone: str | None = None
    status: SlotStatus | None = None
    notes: str | None = None
    total_capacity: int | None = Field(default=None, ge=1)


class GenerateRequest(BaseModel):
    num_days: int | None = Field(default=None, ge=1)


class SlotStats(BaseModel):
    total_slots: int
    active_slots: int
    total_bookings: int


class SpecialistStats(SlotStats):
    inactive_slots: int
    upcoming_available: int
    upcoming_booked: int
    past_slots: int


class SlotResponse(BaseModel):
    success: bool = True
    message: str | None = None
    slot: SlotPublic


class SlotListResponse(BaseModel):
    success: bool = True
    data: list[SlotPublic]
    stats: SlotStats


class AvailableSlotsResponse(BaseModel):
    success: bool = True
    data: list[SlotPublic]
    count: int


class StatsResponse(BaseModel):
    success: bool = True
    data: SpecialistStats


class GenerationData(BaseModel):
    count: int
    skipped: int
    failed: int = 0


class GenerateResponse(BaseModel):
    success: bool = True
    message: str | None = None
    data: GenerationData


class SuccessResponse(BaseModel):
    success: bool = True
    message: str | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    conflicting_slots: list[SlotPublic] | None = None
