import datetime as dt
from datetime import UTC, datetime, time
from enum import Enum

from sqlalchemy import CheckConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from consulting_slots.services.timewindow import TimeWindow


def _utc_naive_now() -> datetime:
    """Naive UTC for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class SlotStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ConsultingSlot(SQLModel, table=True):
    __tablename__ = "consulting_slots"
    __table_args__ = (
        CheckConstraint("total_capacity >= 1", name="ck_consulting_slots_capacity"),
        CheckConstraint(
            "booked_count >= 0 AND booked_count <= total_capacity",
            name="ck_consulting_slots_booked_count",
        ),
        Index("ix_consulting_slots_specialist_date", "specialist_id", "date"),
    )
    id: int | None = Field(default=None, primary_key=True)
    specialist_id: str = Field(index=True)
    specialist_email: str = Field(index=True)
    date: dt.date = Field(index=True)
    start_time: time
    end_time: time
    timezone: str = "UTC"
    duration_minutes: int
    total_capacity: int = Field(default=1, ge=1)
    # Number of live rows in bookings; only BookingEngine moves it
    booked_count: int = Field(default=0, ge=0)
    status: str = Field(default=SlotStatus.ACTIVE.value, index=True)
    notes: str | None = None
    created_at: datetime = Field(default_factory=_utc_naive_now, index=True)
    updated_at: datetime = Field(default_factory=_utc_naive_now)

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(self.date, self.start_time, self.end_time, self.timezone)

    @property
    def is_fully_booked(self) -> bool:
        return self.booked_count >= self.total_capacity

    @property
    def is_active(self) -> bool:
        return self.status == SlotStatus.ACTIVE.value


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("slot_id", "customer_id", name="uq_bookings_slot_customer"),
    )
    id: int | None = Field(default=None, primary_key=True)
    slot_id: int = Field(foreign_key="consulting_slots.id", index=True)
    customer_id: str = Field(index=True)
    customer_email: str
    customer_name: str
    booked_at: datetime = Field(default_factory=_utc_naive_now)
    # Opaque handle returned by the meeting provider
    meeting_ref: str | None = None


class BookingPublic(SQLModel):
    id: int
    customer_id: str
    customer_email: str
    customer_name: str
    booked_at: datetime
    meeting_ref: str | None = None


class SlotPublic(SQLModel):
    id: int
    specialist_id: str
    specialist_email: str
    date: dt.date
    start_time: time
    end_time: time
    timezone: str
    duration_minutes: int
    total_capacity: int
    booked_count: int
    is_fully_booked: bool
    status: SlotStatus
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    bookings: list[BookingPublic] = []
