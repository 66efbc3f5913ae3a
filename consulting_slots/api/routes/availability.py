from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from consulting_slots.api.deps import Identity, get_current_identity, get_session
from consulting_slots.api.schemas.availability import (
    BulkEnableRequest,
    SetDayRequest,
    TemplateResponse,
    TemplateSettingsRequest,
)
from consulting_slots.models.availability import Weekday
from consulting_slots.services.availability_service import (
    bulk_enable,
    disable_all,
    get_or_create_template,
    save_template,
    set_day,
    template_to_public,
    update_settings,
)

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("", response_model=TemplateResponse)
async def get_my_template(
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> TemplateResponse:
    template = await get_or_create_template(session, identity.user_id)
    return TemplateResponse(data=template_to_public(template))


@router.put("/settings", response_model=TemplateResponse)
async def update_my_settings(
    body: TemplateSettingsRequest,
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> TemplateResponse:
    template = await get_or_create_template(session, identity.user_id)
    update_settings(
        template,
        timezone=body.timezone,
        default_capacity=body.default_capacity,
        slot_duration_minutes=body.slot_duration_minutes,
        buffer_minutes=body.buffer_minutes,
        clear_slot_duration=body.whole_day_slots,
    )
    template = await save_template(session, template)
    return TemplateResponse(message="Availability saved", data=template_to_public(template))


@router.put("/days/{weekday}", response_model=TemplateResponse)
async def set_my_day(
    weekday: Weekday,
    body: SetDayRequest,
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> TemplateResponse:
    template = await get_or_create_template(session, identity.user_id)
    set_day(template, weekday, body.enabled, body.start_time, body.end_time)
    template = await save_template(session, template)
    return TemplateResponse(message="Availability saved", data=template_to_public(template))


@router.post("/bulk-enable", response_model=TemplateResponse)
async def bulk_enable_days(
    body: BulkEnableRequest,
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> TemplateResponse:
    template = await get_or_create_template(session, identity.user_id)
    bulk_enable(template, body.days)
    template = await save_template(session, template)
    return TemplateResponse(message="Availability saved", data=template_to_public(template))


@router.post("/disable-all", response_model=TemplateResponse)
async def disable_all_days(
    session: AsyncSession = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
) -> TemplateResponse:
    template = await get_or_create_template(session, identity.user_id)
    disable_all(template)
    template = await save_template(session, template)
    return TemplateResponse(message="Availability saved", data=template_to_public(template))
