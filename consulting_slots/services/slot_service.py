import logging
from collections.abc import Sequence
from datetime import UTC, date, datetime, timedelta
from enum import Enum

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from consulting_slots.core.config import settings
from consulting_slots.core.errors import ErrorKind, SlotError
from consulting_slots.models.slot import (
    Booking,
    BookingPublic,
    ConsultingSlot,
    SlotPublic,
    SlotStatus,
)
from consulting_slots.services.timewindow import TimeWindow, overlaps, zone

logger = logging.getLogger(__name__)


class SlotFilter(str, Enum):
    ALL = "all"
    UPCOMING = "upcoming"
    PAST = "past"
    AVAILABLE = "available"
    BOOKED = "booked"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _utc_naive(dt: datetime) -> datetime:
    """Naive UTC for comparison with TIMESTAMP WITHOUT TIME ZONE."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(UTC)
    return dt.replace(tzinfo=None)


def _slot_today(slot: ConsultingSlot, now: datetime) -> date:
    return now.astimezone(zone(slot.timezone)).date()


def is_upcoming(slot: ConsultingSlot, now: datetime) -> bool:
    # Day granularity: a slot later today is still "upcoming" even once it started
    return slot.date >= _slot_today(slot, now)


def is_available(slot: ConsultingSlot, now: datetime) -> bool:
    return is_upcoming(slot, now) and slot.is_active and not slot.is_fully_booked


def matches_filter(slot: ConsultingSlot, slot_filter: SlotFilter, now: datetime) -> bool:
    if slot_filter == SlotFilter.UPCOMING:
        return is_upcoming(slot, now)
    if slot_filter == SlotFilter.PAST:
        return not is_upcoming(slot, now)
    if slot_filter == SlotFilter.AVAILABLE:
        return is_available(slot, now)
    if slot_filter == SlotFilter.BOOKED:
        return slot.booked_count > 0
    return True


async def lock_specialist_schedule(session: AsyncSession, specialist_id: str) -> None:
    """Serialize slot writes for one specialist until the transaction ends.

    PostgreSQL takes a transaction-scoped advisory lock keyed on the
    specialist. SQLite transactions open with BEGIN IMMEDIATE (core.db),
    which already holds the database write lock.
    """
    if session.get_bind().dialect.name == "postgresql":
        await session.execute(select(func.pg_advisory_xact_lock(func.hashtext(specialist_id))))


async def find_conflicts(
    session: AsyncSession,
    specialist_id: str,
    window: TimeWindow,
    exclude_slot_id: int | None = None,
) -> list[ConsultingSlot]:
    """Active slots of the specialist whose window overlaps `window`."""
    # Local dates of one instant differ by at most two days across zones
    q = select(ConsultingSlot).where(
        ConsultingSlot.specialist_id == specialist_id,
        ConsultingSlot.date >= window.date - timedelta(days=2),
        ConsultingSlot.date <= window.date + timedelta(days=2),
        ConsultingSlot.status == SlotStatus.ACTIVE.value,
    )
    if exclude_slot_id is not None:
        q = q.where(ConsultingSlot.id != exclude_slot_id)
    result = await session.execute(
        q.order_by(ConsultingSlot.date, ConsultingSlot.start_time, ConsultingSlot.id)
    )
    return [slot for slot in result.scalars().all() if overlaps(slot.window, window)]


async def _raise_on_conflict(
    session: AsyncSession,
    specialist_id: str,
    window: TimeWindow,
    exclude_slot_id: int | None = None,
) -> None:
    conflicts = await find_conflicts(session, specialist_id, window, exclude_slot_id)
    if conflicts:
        bookings = await get_bookings_for_slots(session, [s.id for s in conflicts])
        raise SlotError(
            ErrorKind.CONFLICT,
            conflicting_slots=[slot_to_public(s, bookings.get(s.id, [])) for s in conflicts],
        )


async def create_slot(
    session: AsyncSession,
    specialist_id: str,
    specialist_email: str,
    window: TimeWindow,
    total_capacity: int = 1,
    notes: str | None = None,
    now: datetime | None = None,
) -> ConsultingSlot:
    now = now or _utc_now()
    if total_capacity < 1:
        raise SlotError(ErrorKind.INVALID_RANGE, "Capacity must be at least 1")
    if window.date < window.today(now):
        raise SlotError(ErrorKind.INVALID_RANGE, "Cannot create a slot in the past")
    await lock_specialist_schedule(session, specialist_id)
    await _raise_on_conflict(session, specialist_id, window)
    stamp = _utc_naive(now)
    slot = ConsultingSlot(
        specialist_id=specialist_id,
        specialist_email=specialist_email,
        date=window.date,
        start_time=window.start_time,
        end_time=window.end_time,
        timezone=window.timezone,
        duration_minutes=window.duration_minutes,
        total_capacity=total_capacity,
        notes=notes,
        created_at=stamp,
        updated_at=stamp,
    )
    session.add(slot)
    await session.flush()
    await session.refresh(slot)
    logger.info(
        "Created slot %s for %s on %s %s-%s",
        slot.id, specialist_id, slot.date, slot.start_time, slot.end_time,
    )
    return slot


async def get_slot(session: AsyncSession, slot_id: int, for_update: bool = False) -> ConsultingSlot:
    """Load a slot; `for_update` row-locks it and reloads the current values."""
    slot = await session.get(
        ConsultingSlot, slot_id, with_for_update=for_update, populate_existing=for_update
    )
    if not slot:
        raise SlotError(ErrorKind.NOT_FOUND)
    return slot


async def edit_slot(
    session: AsyncSession,
    slot_id: int,
    new_window: TimeWindow | None = None,
    new_status: SlotStatus | None = None,
    new_notes: str | None = None,
    new_capacity: int | None = None,
    now: datetime | None = None,
) -> ConsultingSlot:
    now = now or _utc_now()
    slot = await get_slot(session, slot_id, for_update=True)
    window = new_window or slot.window
    status = new_status.value if new_status is not None else slot.status

    if new_window is not None and new_window != slot.window:
        # Booked slots may only grow: every live booking was made for the old window
        if slot.booked_count > 0 and (
            new_window.timezone != slot.timezone or not new_window.covers(slot.window)
        ):
            raise SlotError(
                ErrorKind.HAS_BOOKINGS,
                "Cannot shrink or move a slot that already has bookings. "
                "Please cancel bookings first or delete the slot.",
            )
        if new_window.date < new_window.today(now):
            raise SlotError(ErrorKind.INVALID_RANGE, "Cannot move a slot into the past")

    becomes_active = status == SlotStatus.ACTIVE.value and (
        new_window is not None or not slot.is_active
    )
    if becomes_active:
        await lock_specialist_schedule(session, slot.specialist_id)
        await _raise_on_conflict(session, slot.specialist_id, window, exclude_slot_id=slot.id)

    if new_capacity is not None:
        if new_capacity < 1:
            raise SlotError(ErrorKind.INVALID_RANGE, "Capacity must be at least 1")
        result = await session.execute(
            update(ConsultingSlot)
            .where(ConsultingSlot.id == slot_id, ConsultingSlot.booked_count <= new_capacity)
            .values(total_capacity=new_capacity)
        )
        if result.rowcount == 0:
            raise SlotError(
                ErrorKind.HAS_BOOKINGS,
                f"Capacity cannot drop below the {slot.booked_count} existing booking(s)",
            )

    if new_window is not None:
        slot.date = window.date
        slot.start_time = window.start_time
        slot.end_time = window.end_time
        slot.timezone = window.timezone
        slot.duration_minutes = window.duration_minutes
    slot.status = status
    if new_notes is not None:
        slot.notes = new_notes
    slot.updated_at = _utc_naive(now)
    session.add(slot)
    await session.flush()
    await session.refresh(slot)
    return slot


async def delete_slot(session: AsyncSession, slot_id: int) -> None:
    slot = await get_slot(session, slot_id, for_update=True)
    result = await session.execute(
        delete(ConsultingSlot).where(ConsultingSlot.id == slot_id, ConsultingSlot.booked_count == 0)
    )
    if result.rowcount == 0:
        raise SlotError(
            ErrorKind.HAS_BOOKINGS,
            f"Cannot delete slot with {slot.booked_count} booking(s). Please cancel all bookings first.",
        )
    logger.info("Deleted slot %s", slot_id)


async def list_slots(
    session: AsyncSession,
    specialist_id: str,
    slot_filter: SlotFilter = SlotFilter.ALL,
    now: datetime | None = None,
) -> list[ConsultingSlot]:
    now = now or _utc_now()
    result = await session.execute(
        select(ConsultingSlot)
        .where(ConsultingSlot.specialist_id == specialist_id)
        .order_by(ConsultingSlot.date, ConsultingSlot.start_time, ConsultingSlot.id)
    )
    return [s for s in result.scalars().all() if matches_filter(s, slot_filter, now)]


async def list_available_slots(
    session: AsyncSession,
    specialist_id: str,
    from_date: date | None = None,
    to_date: date | None = None,
    now: datetime | None = None,
) -> list[ConsultingSlot]:
    """Customer view: active, not full and not yet started."""
    now = now or _utc_now()
    # West of UTC the local date can still be yesterday; starts_at trims the rest
    start = from_date or now.astimezone(UTC).date() - timedelta(days=1)
    end = to_date or start + timedelta(days=settings.available_window_days + 1)
    result = await session.execute(
        select(ConsultingSlot)
        .where(
            ConsultingSlot.specialist_id == specialist_id,
            ConsultingSlot.status == SlotStatus.ACTIVE.value,
            ConsultingSlot.booked_count < ConsultingSlot.total_capacity,
            ConsultingSlot.date >= start,
            ConsultingSlot.date <= end,
        )
        .order_by(ConsultingSlot.date, ConsultingSlot.start_time, ConsultingSlot.id)
    )
    return [s for s in result.scalars().all() if s.window.starts_at > now]


async def get_slot_stats(
    session: AsyncSession, specialist_id: str, now: datetime | None = None
) -> dict[str, int]:
    now = now or _utc_now()
    slots = await list_slots(session, specialist_id, SlotFilter.ALL, now)
    upcoming_active = [s for s in slots if is_upcoming(s, now) and s.is_active]
    return {
        "total_slots": len(slots),
        "active_slots": sum(1 for s in slots if s.is_active),
        "inactive_slots": sum(1 for s in slots if not s.is_active),
        "upcoming_available": sum(1 for s in upcoming_active if not s.is_fully_booked),
        "upcoming_booked": sum(1 for s in upcoming_active if s.is_fully_booked),
        "past_slots": sum(1 for s in slots if not is_upcoming(s, now)),
        "total_bookings": sum(s.booked_count for s in slots),
    }


async def get_bookings_for_slots(
    session: AsyncSession, slot_ids: Sequence[int]
) -> dict[int, list[Booking]]:
    """Live bookings per slot, in booking order."""
    if not slot_ids:
        return {}
    result = await session.execute(
        select(Booking).where(Booking.slot_id.in_(slot_ids)).order_by(Booking.id)
    )
    out: dict[int, list[Booking]] = {slot_id: [] for slot_id in slot_ids}
    for booking in result.scalars().all():
        out[booking.slot_id].append(booking)
    return out


def slot_to_public(slot: ConsultingSlot, bookings: Sequence[Booking] = ()) -> SlotPublic:
    return SlotPublic(
        id=slot.id,
        specialist_id=slot.specialist_id,
        specialist_email=slot.specialist_email,
        date=slot.date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        timezone=slot.timezone,
        duration_minutes=slot.duration_minutes,
        total_capacity=slot.total_capacity,
        booked_count=slot.booked_count,
        is_fully_booked=slot.is_fully_booked,
        status=SlotStatus(slot.status),
        notes=slot.notes,
        created_at=slot.created_at,
        updated_at=slot.updated_at,
        bookings=[BookingPublic.model_validate(b, from_attributes=True) for b in bookings],
    )


async def slots_to_public(session: AsyncSession, slots: Sequence[ConsultingSlot]) -> list[SlotPublic]:
    bookings = await get_bookings_for_slots(session, [s.id for s in slots])
    return [slot_to_public(s, bookings.get(s.id, [])) for s in slots]
