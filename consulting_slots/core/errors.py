from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    INVALID_RANGE = "invalid_range"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    HAS_BOOKINGS = "has_bookings"
    INACTIVE = "inactive"
    PAST_SLOT = "past_slot"
    DUPLICATE_BOOKING = "duplicate_booking"
    SLOT_FULL = "slot_full"
    FORBIDDEN = "forbidden"
    TOO_LATE = "too_late"
    NO_AVAILABILITY = "no_availability"
    TIMEOUT = "timeout"


# Stable, user-facing messages per kind; callers may pass a more specific one.
DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.INVALID_RANGE: "Invalid time range",
    ErrorKind.CONFLICT: "Time slot conflict: Specialist already has a slot during this time",
    ErrorKind.NOT_FOUND: "Slot not found",
    ErrorKind.HAS_BOOKINGS: "Slot has bookings. Please cancel all bookings first.",
    ErrorKind.INACTIVE: "Slot is inactive",
    ErrorKind.PAST_SLOT: "Slot is in the past",
    ErrorKind.DUPLICATE_BOOKING: "Customer has already booked this slot",
    ErrorKind.SLOT_FULL: "Slot is fully booked",
    ErrorKind.FORBIDDEN: "Not authorized for this slot",
    ErrorKind.TOO_LATE: "Too late to cancel this booking",
    ErrorKind.NO_AVAILABILITY: "No active availability schedule",
    ErrorKind.TIMEOUT: "Operation timed out",
}

HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.INVALID_RANGE: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.HAS_BOOKINGS: 409,
    ErrorKind.INACTIVE: 409,
    ErrorKind.PAST_SLOT: 409,
    ErrorKind.DUPLICATE_BOOKING: 409,
    ErrorKind.SLOT_FULL: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.TOO_LATE: 409,
    ErrorKind.NO_AVAILABILITY: 400,
    ErrorKind.TIMEOUT: 504,
}


class SlotError(Exception):
    """A domain failure of the scheduling core.

    Raised by services and turned into a ``{success: false, message}`` body at the
    API boundary. ``conflicting_slots`` is only set for ``ErrorKind.CONFLICT``.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        conflicting_slots: list[Any] | None = None,
    ) -> None:
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        self.conflicting_slots = conflicting_slots or []
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]
