import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from consulting_slots.core.config import settings
from consulting_slots.core.errors import ErrorKind, SlotError
from consulting_slots.models.availability import AvailabilityTemplate
from consulting_slots.services.slot_service import create_slot
from consulting_slots.services.timewindow import TimeWindow, project_weekly, split_window, zone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    count: int
    skipped: int
    failed: int = 0


def plan_windows(template: AvailabilityTemplate, horizon_days: int, now: datetime) -> list[TimeWindow]:
    """Concrete windows the template asks for over [today, today + horizon_days]."""
    today = now.astimezone(zone(template.timezone)).date()
    windows = project_weekly(template, today, today + timedelta(days=horizon_days))
    if template.slot_duration_minutes:
        windows = [
            piece
            for window in windows
            for piece in split_window(window, template.slot_duration_minutes, template.buffer_minutes)
        ]
    return [w for w in windows if w.ends_at > now]


async def generate_slots(
    session: AsyncSession,
    specialist_id: str,
    specialist_email: str,
    template: AvailabilityTemplate | None,
    horizon_days: int | None = None,
    now: datetime | None = None,
) -> GenerationResult:
    """Materialize the weekly template into slots.

    Best-effort and idempotent: windows overlapping an existing active slot are
    skipped, so re-running after a partial success creates only what is missing.
    Any other failure is counted and leaves the remaining windows alone.
    """
    now = now or datetime.now(UTC)
    horizon_days = horizon_days if horizon_days is not None else settings.generation_horizon_days
    if horizon_days < 1 or horizon_days > settings.max_generation_days:
        raise SlotError(
            ErrorKind.INVALID_RANGE,
            f"Number of days must be between 1 and {settings.max_generation_days}",
        )
    if template is None or not template.enabled_days():
        raise SlotError(ErrorKind.NO_AVAILABILITY)

    count = 0
    skipped = 0
    failed = 0
    for window in plan_windows(template, horizon_days, now):
        try:
            # A savepoint per window: a failure undoes only that window
            async with session.begin_nested():
                await create_slot(
                    session,
                    specialist_id,
                    specialist_email,
                    window,
                    total_capacity=template.default_capacity,
                    now=now,
                )
        except SlotError as e:
            if e.kind == ErrorKind.CONFLICT:
                skipped += 1
                continue
            logger.warning(
                "Could not create %s %s-%s for %s: %s",
                window.date, window.start_time, window.end_time, specialist_id, e,
            )
            failed += 1
            continue
        except IntegrityError as e:
            logger.warning(
                "Could not create %s %s-%s for %s: %s",
                window.date, window.start_time, window.end_time, specialist_id, e.orig,
            )
            failed += 1
            continue
        count += 1

    logger.info(
        "Generated %d slot(s) for %s over %d days (%d skipped as conflicts, %d failed)",
        count, specialist_id, horizon_days, skipped, failed,
    )
    return GenerationResult(count=count, skipped=skipped, failed=failed)
