from fastapi import APIRouter, BackgroundTasks, Depends, status

from consulting_slots.api.deps import Identity, get_booking_engine, get_current_identity
from consulting_slots.api.schemas.bookings import (
    BookingReceiptPublic,
    BookingResponse,
    BookRequest,
    CancelRequest,
    MeetingRefRequest,
)
from consulting_slots.api.schemas.slots import SuccessResponse
from consulting_slots.services.booking_service import BookingEngine

router = APIRouter(prefix="/slots", tags=["bookings"])


@router.post("/{slot_id}/book", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def book_slot(
    slot_id: int,
    body: BookRequest,
    background_tasks: BackgroundTasks,
    engine: BookingEngine = Depends(get_booking_engine),
    identity: Identity = Depends(get_current_identity),
) -> BookingResponse:
    receipt = await engine.book(
        slot_id,
        customer_id=identity.user_id,
        customer_email=identity.email,
        customer_name=body.customer_name or identity.name or identity.email,
        defer=background_tasks.add_task,
    )
    return BookingResponse(
        message="Slot booked successfully",
        data=BookingReceiptPublic(
            booking_id=receipt.booking_id,
            slot_id=receipt.slot_id,
            date=receipt.window.date,
            start_time=receipt.window.start_time,
            end_time=receipt.window.end_time,
            timezone=receipt.window.timezone,
            customer_id=receipt.customer_id,
            customer_email=receipt.customer_email,
            customer_name=receipt.customer_name,
            booked_at=receipt.booked_at,
        ),
    )


@router.post("/{slot_id}/cancel", response_model=SuccessResponse)
async def cancel_booking(
    slot_id: int,
    body: CancelRequest,
    background_tasks: BackgroundTasks,
    engine: BookingEngine = Depends(get_booking_engine),
    identity: Identity = Depends(get_current_identity),
) -> SuccessResponse:
    booking_ref = body.booking_ref if body.booking_ref is not None else identity.user_id
    await engine.cancel(
        slot_id, booking_ref, body.reason, identity.as_actor(), defer=background_tasks.add_task
    )
    return SuccessResponse(message="Booking cancelled successfully")


@router.put("/{slot_id}/bookings/{booking_id}/meeting", response_model=SuccessResponse)
async def attach_meeting(
    slot_id: int,
    booking_id: int,
    body: MeetingRefRequest,
    engine: BookingEngine = Depends(get_booking_engine),
    identity: Identity = Depends(get_current_identity),
) -> SuccessResponse:
    await engine.attach_meeting_ref(slot_id, booking_id, body.meeting_ref, identity.as_actor())
    return SuccessResponse(message="Meeting attached")
