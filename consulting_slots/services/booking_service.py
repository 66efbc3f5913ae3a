"""
Booking engine

Reserves and releases slot capacity. For any one slot, book/cancel are
linearizable: an in-process lock per slot orders callers on this worker, and a
conditional UPDATE on booked_count keeps other workers from overbooking.
"""

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consulting_slots.core.errors import ErrorKind, SlotError
from consulting_slots.models.slot import Booking, ConsultingSlot, SlotStatus
from consulting_slots.services.events import BookingCancelled, BookingCreated, BookingEvent, EventBus
from consulting_slots.services.timewindow import TimeWindow

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)
    return dt.replace(tzinfo=None)


@dataclass(frozen=True)
class Actor:
    """Who is asking: an authenticated user id and email."""

    user_id: str
    email: str | None = None


@dataclass(frozen=True)
class BookingReceipt:
    booking_id: int
    slot_id: int
    window: TimeWindow
    customer_id: str
    customer_email: str
    customer_name: str
    booked_at: datetime


class BookingEngine:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        events: EventBus | None = None,
        cancellation_lead: timedelta = timedelta(hours=24),
        timeout_seconds: float | None = 10.0,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.session_maker = session_maker
        self.events = events or EventBus()
        self.cancellation_lead = cancellation_lead
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, slot_id: int) -> asyncio.Lock:
        lock = self._locks.get(slot_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[slot_id] = lock
        return lock

    async def _run(
        self,
        slot_id: int,
        op: Callable[[AsyncSession], Awaitable[T]],
        timeout: float | None,
    ) -> T:
        """Run `op` in its own transaction while holding the slot lock.

        The deadline bounds the lock wait and the statements. Commit runs
        outside it, so a caller never sees TIMEOUT for a change that landed.
        """
        timeout = timeout if timeout is not None else self.timeout_seconds
        deadline = None if timeout is None else asyncio.get_running_loop().time() + timeout
        lock = self._lock_for(slot_id)
        try:
            async with asyncio.timeout_at(deadline):
                await lock.acquire()
        except TimeoutError:
            logger.warning("Timed out after %ss waiting for slot %s", timeout, slot_id)
            raise SlotError(ErrorKind.TIMEOUT) from None
        try:
            async with self.session_maker() as session:
                try:
                    async with asyncio.timeout_at(deadline):
                        result = await op(session)
                except TimeoutError:
                    # Leaving the session block rolls the transaction back
                    logger.warning("Booking operation on slot %s timed out after %ss", slot_id, timeout)
                    raise SlotError(ErrorKind.TIMEOUT) from None
                await session.commit()
            return result
        finally:
            lock.release()

    async def _publish(self, event: BookingEvent, defer: Callable[..., Any] | None) -> None:
        if defer is None:
            await self.events.publish(event)
        else:
            # e.g. BackgroundTasks.add_task: handlers run once the response is out
            defer(self.events.publish, event)

    async def book(
        self,
        slot_id: int,
        customer_id: str,
        customer_email: str,
        customer_name: str,
        timeout: float | None = None,
        defer: Callable[..., Any] | None = None,
    ) -> BookingReceipt:
        async def op(session: AsyncSession) -> tuple[BookingReceipt, BookingCreated]:
            return await self._book(session, slot_id, customer_id, customer_email, customer_name)

        receipt, event = await self._run(slot_id, op, timeout)
        logger.info("Customer %s booked slot %s (booking %s)", customer_id, slot_id, receipt.booking_id)
        await self._publish(event, defer)
        return receipt

    async def _book(
        self,
        session: AsyncSession,
        slot_id: int,
        customer_id: str,
        customer_email: str,
        customer_name: str,
    ) -> tuple[BookingReceipt, BookingCreated]:
        now = self.clock()
        slot = await session.get(ConsultingSlot, slot_id)
        if not slot:
            raise SlotError(ErrorKind.NOT_FOUND)
        if slot.status != SlotStatus.ACTIVE.value:
            raise SlotError(ErrorKind.INACTIVE)
        window = slot.window
        if window.starts_at <= now:
            raise SlotError(ErrorKind.PAST_SLOT)
        existing = await session.execute(
            select(Booking.id).where(Booking.slot_id == slot_id, Booking.customer_id == customer_id)
        )
        if existing.first():
            raise SlotError(ErrorKind.DUPLICATE_BOOKING)

        # Check-and-increment in one statement; zero rows means no seat was left
        stamp = _utc_naive(now)
        result = await session.execute(
            update(ConsultingSlot)
            .where(
                ConsultingSlot.id == slot_id,
                ConsultingSlot.status == SlotStatus.ACTIVE.value,
                ConsultingSlot.booked_count < ConsultingSlot.total_capacity,
            )
            .values(booked_count=ConsultingSlot.booked_count + 1, updated_at=stamp)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            status = (
                await session.execute(select(ConsultingSlot.status).where(ConsultingSlot.id == slot_id))
            ).scalar_one_or_none()
            if status is None:
                raise SlotError(ErrorKind.NOT_FOUND)
            if status != SlotStatus.ACTIVE.value:
                raise SlotError(ErrorKind.INACTIVE)
            raise SlotError(ErrorKind.SLOT_FULL)

        booking = Booking(
            slot_id=slot_id,
            customer_id=customer_id,
            customer_email=customer_email,
            customer_name=customer_name,
            booked_at=stamp,
        )
        session.add(booking)
        try:
            await session.flush()
        except IntegrityError:
            # Another worker inserted the same customer first; the raise rolls back our increment
            raise SlotError(ErrorKind.DUPLICATE_BOOKING)

        receipt = BookingReceipt(
            booking_id=booking.id,
            slot_id=slot_id,
            window=window,
            customer_id=customer_id,
            customer_email=customer_email,
            customer_name=customer_name,
            booked_at=stamp,
        )
        event = BookingCreated(
            slot_id=slot_id,
            booking_id=booking.id,
            window=window,
            specialist_id=slot.specialist_id,
            specialist_email=slot.specialist_email,
            customer_id=customer_id,
            customer_email=customer_email,
            customer_name=customer_name,
            booked_at=stamp,
        )
        return receipt, event

    async def cancel(
        self,
        slot_id: int,
        booking_ref: int | str,
        reason: str | None,
        actor: Actor,
        timeout: float | None = None,
        defer: Callable[..., Any] | None = None,
    ) -> BookingCancelled:
        """Cancel by booking id (int) or by customer id (str)."""

        async def op(session: AsyncSession) -> BookingCancelled:
            return await self._cancel(session, slot_id, booking_ref, reason, actor)

        event = await self._run(slot_id, op, timeout)
        logger.info(
            "Booking %s on slot %s cancelled by %s", event.booking_id, slot_id, actor.user_id
        )
        await self._publish(event, defer)
        return event

    async def _cancel(
        self,
        session: AsyncSession,
        slot_id: int,
        booking_ref: int | str,
        reason: str | None,
        actor: Actor,
    ) -> BookingCancelled:
        now = self.clock()
        slot = await session.get(ConsultingSlot, slot_id)
        if not slot:
            raise SlotError(ErrorKind.NOT_FOUND)
        q = select(Booking).where(Booking.slot_id == slot_id)
        if isinstance(booking_ref, int):
            q = q.where(Booking.id == booking_ref)
        else:
            q = q.where(Booking.customer_id == booking_ref)
        booking = (await session.execute(q)).scalar_one_or_none()
        if not booking:
            raise SlotError(ErrorKind.NOT_FOUND, "Booking not found")
        if actor.user_id not in (booking.customer_id, slot.specialist_id):
            raise SlotError(ErrorKind.FORBIDDEN, "Only the customer or the specialist can cancel this booking")
        window = slot.window
        if now >= window.starts_at - self.cancellation_lead:
            raise SlotError(ErrorKind.TOO_LATE)

        # Row count guards against a concurrent cancel on another worker
        deleted = await session.execute(
            delete(Booking)
            .where(Booking.id == booking.id)
            .execution_options(synchronize_session=False)
        )
        if deleted.rowcount == 0:
            raise SlotError(ErrorKind.NOT_FOUND, "Booking not found")
        await session.execute(
            update(ConsultingSlot)
            .where(ConsultingSlot.id == slot_id, ConsultingSlot.booked_count > 0)
            .values(booked_count=ConsultingSlot.booked_count - 1, updated_at=_utc_naive(now))
            .execution_options(synchronize_session=False)
        )
        return BookingCancelled(
            slot_id=slot_id,
            booking_id=booking.id,
            window=window,
            specialist_id=slot.specialist_id,
            specialist_email=slot.specialist_email,
            customer_id=booking.customer_id,
            customer_email=booking.customer_email,
            customer_name=booking.customer_name,
            reason=reason,
            cancelled_at=_utc_naive(now),
            cancelled_by=actor.user_id,
        )

    async def attach_meeting_ref(
        self, slot_id: int, booking_id: int, meeting_ref: str, actor: Actor
    ) -> Booking:
        """Store the meeting provider's handle on a booking (specialist only)."""

        async def op(session: AsyncSession) -> Booking:
            slot = await session.get(ConsultingSlot, slot_id)
            if not slot:
                raise SlotError(ErrorKind.NOT_FOUND)
            if actor.user_id != slot.specialist_id:
                raise SlotError(ErrorKind.FORBIDDEN)
            booking = await session.get(Booking, booking_id)
            if not booking or booking.slot_id != slot_id:
                raise SlotError(ErrorKind.NOT_FOUND, "Booking not found")
            booking.meeting_ref = meeting_ref
            session.add(booking)
            await session.flush()
            return booking

        return await self._run(slot_id, op, None)
