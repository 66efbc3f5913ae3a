import logging
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from consulting_slots.api.deps import Identity, get_current_identity, get_session
from consulting_slots.api.schemas.slots import (
    AvailableSlotsResponse,
    CreateSlotRequest,
    EditSlotRequest,
    GenerateRequest,
    GenerateResponse,
    GenerationData,
    SlotListResponse,
    SlotResponse,
    SlotStats,
    SpecialistStats,
    StatsResponse,
    SuccessResponse,
)
from consulting_slots.core.config import settings
from consulting_slots.core.errors import ErrorKind, SlotError
from consulting_slots.models.slot import ConsultingSlot
from consulting_slots.services.availability_service import get_template
from consulting_slots.services.generation_service import generate_slots
from consulting_slots.services.slot_service import (
    SlotFilter,
    create_slot,
    delete_slot,
    edit_slot,
    get_slot,
    get_slot_stats,
    list_available_slots,
    list_slots,
    slots_to_public,
)
from consulting_slots.services.timewindow import TimeWindow

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/slots", tags=["slots"])


def _ensure_owner(slot: ConsultingSlot, identity: Identity) -> None:
    if slot.specialist_id != identity.user_id:
        raise SlotError(ErrorKind.FORBIDDEN)


@router.get("/available", response_model=AvailableSlotsResponse)
async def available_slots(
    specialist_id: str = Query(...),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    session: AsyncSession = Depends(get_session),
) -> AvailableSlotsResponse:
    """Customer view: bookable slots of one specialist."""
    slots = await list_available_slots(session, specialist_id, start_date, end_date)
    data = await slots_to_public(session, slots)
    return AvailableSlotsResponse(data=data, count=len(data))


@router.get("/stats", response_model=StatsResponse)
async def specialist_stats(
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> StatsResponse:
    stats = await get_slot_stats(session, identity.user_id)
    return StatsResponse(data=SpecialistStats(**stats))


@router.get("", response_model=SlotListResponse)
async def list_my_slots(
    slot_filter: SlotFilter = Query(SlotFilter.ALL, alias="filter"),
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> SlotListResponse:
    slots = await list_slots(session, identity.user_id, slot_filter)
    stats = await get_slot_stats(session, identity.user_id)
    return SlotListResponse(
        data=await slots_to_public(session, slots),
        stats=SlotStats(
            total_slots=stats["total_slots"],
            active_slots=stats["active_slots"],
            total_bookings=stats["total_bookings"],
        ),
    )


@router.post("", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def create_my_slot(
    body: CreateSlotRequest,
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> SlotResponse:
    if body.specialist_id and body.specialist_id != identity.user_id:
        raise SlotError(ErrorKind.FORBIDDEN, "Cannot create slots for another specialist")
    window = TimeWindow(
        body.date, body.start_time, body.end_time, body.timezone or settings.default_timezone
    )
    slot = await create_slot(
        session,
        identity.user_id,
        identity.email,
        window,
        total_capacity=body.total_capacity or settings.default_slot_capacity,
        notes=body.notes,
    )
    data = await slots_to_public(session, [slot])
    return SlotResponse(message="Slot created successfully", slot=data[0])


@router.post("/generate", response_model=GenerateResponse)
async def generate_from_availability(
    body: GenerateRequest,
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> GenerateResponse:
    template = await get_template(session, identity.user_id)
    result = await generate_slots(
        session, identity.user_id, identity.email, template, horizon_days=body.num_days
    )
    return GenerateResponse(
        message=f"{result.count} slots created successfully",
        data=GenerationData(count=result.count, skipped=result.skipped, failed=result.failed),
    )


@router.get("/{slot_id}", response_model=SlotResponse)
async def get_one_slot(
    slot_id: int,
    session: AsyncSession = Depends(get_session),
) -> SlotResponse:
    slot = await get_slot(session, slot_id)
    data = await slots_to_public(session, [slot])
    return SlotResponse(slot=data[0])


@router.put("/{slot_id}", response_model=SlotResponse)
async def edit_my_slot(
    slot_id: int,
    body: EditSlotRequest,
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> SlotResponse:
    slot = await get_slot(session, slot_id, for_update=True)
    _ensure_owner(slot, identity)
    new_window = None
    if any(v is not None for v in (body.date, body.start_time, body.end_time, body.timezone)):
        current = slot.window
        new_window = TimeWindow(
            body.date or current.date,
            body.start_time or current.start_time,
            body.end_time or current.end_time,
            body.timezone or current.timezone,
        )
    slot = await edit_slot(
        session,
        slot_id,
        new_window=new_window,
        new_status=body.status,
        new_notes=body.notes,
        new_capacity=body.total_capacity,
    )
    data = await slots_to_public(session, [slot])
    return SlotResponse(message="Slot updated successfully", slot=data[0])


@router.delete("/{slot_id}", response_model=SuccessResponse)
async def delete_my_slot(
    slot_id: int,
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> SuccessResponse:
    slot = await get_slot(session, slot_id, for_update=True)
    _ensure_owner(slot, identity)
    await delete_slot(session, slot_id)
    return SuccessResponse(message="Slot deleted successfully")
