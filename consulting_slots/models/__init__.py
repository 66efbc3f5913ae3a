from consulting_slots.models.availability import (
    AvailabilityTemplate,
    AvailabilityTemplatePublic,
    DaySchedule,
    Weekday,
)
from consulting_slots.models.slot import (
    Booking,
    BookingPublic,
    ConsultingSlot,
    SlotPublic,
    SlotStatus,
)

__all__ = [
    "AvailabilityTemplate",
    "AvailabilityTemplatePublic",
    "DaySchedule",
    "Weekday",
    "Booking",
    "BookingPublic",
    "ConsultingSlot",
    "SlotPublic",
    "SlotStatus",
]
