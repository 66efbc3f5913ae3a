import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from consulting_slots.services.timewindow import TimeWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingCreated:
    slot_id: int
    booking_id: int
    window: TimeWindow
    specialist_id: str
    specialist_email: str
    customer_id: str
    customer_email: str
    customer_name: str
    booked_at: datetime


@dataclass(frozen=True)
class BookingCancelled:
    slot_id: int
    booking_id: int
    window: TimeWindow
    specialist_id: str
    specialist_email: str
    customer_id: str
    customer_email: str
    customer_name: str
    reason: str | None
    cancelled_at: datetime
    cancelled_by: str


BookingEvent = BookingCreated | BookingCancelled
Handler = Callable[[BookingEvent], Awaitable[None] | None]


class EventBus:
    """Fan booking events out to the collaborators (meetings, notifications).

    Handlers run after the booking transaction has committed; a failing handler
    is logged and never undoes the booking.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[type, Handler]] = []

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers.append((event_type, handler))

    async def publish(self, event: BookingEvent) -> None:
        logger.debug("Publishing %s for slot %s", type(event).__name__, event.slot_id)
        for event_type, handler in self._handlers:
            if not isinstance(event, event_type):
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(
                    "Handler %s failed for %s: %s",
                    getattr(handler, "__name__", handler), type(event).__name__, e,
                )
