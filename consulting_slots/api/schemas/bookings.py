import datetime as dt
from datetime import datetime, time

from pydantic import BaseModel, EmailStr, Field


class BookRequest(BaseModel):
    # Identity comes from the token; the form may supply a display name
    customer_name: str | None = Field(default=None, max_length=200)


class CancelRequest(BaseModel):
    # Booking id, or the customer's id; defaults to the caller's own booking
    booking_ref: int | str | None = None
    reason: str | None = Field(default=None, max_length=1000)


class MeetingRefRequest(BaseModel):
    meeting_ref: str = Field(min_length=1)


class BookingReceiptPublic(BaseModel):
    booking_id: int
    slot_id: int
    date: dt.date
    start_time: time
    end_time: time
    timezone: str
    customer_id: str
    customer_email: EmailStr
    customer_name: str
    booked_at: datetime


class BookingResponse(BaseModel):
    success: bool = True
    message: str | None = None
    data: BookingReceiptPublic
