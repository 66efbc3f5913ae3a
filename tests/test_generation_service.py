"""
Tests for services/generation_service.py
"""

from datetime import date, time
from unittest import mock

from consulting_slots.core.config import settings
from consulting_slots.core.errors import ErrorKind, SlotError
from consulting_slots.models.availability import AvailabilityTemplate, Weekday
from consulting_slots.services.availability_service import set_day, update_settings
from consulting_slots.services import generation_service
from consulting_slots.services.generation_service import generate_slots
from consulting_slots.services.slot_service import list_slots

from support import NOW, SPECIALIST, SPECIALIST_EMAIL, DatabaseTestCase, window


def monday_template(capacity: int = 1) -> AvailabilityTemplate:
    template = AvailabilityTemplate(specialist_id=SPECIALIST, timezone="UTC", default_capacity=capacity)
    set_day(template, Weekday.MONDAY, True, time(9, 0), time(17, 0))
    return template


class TestGenerateSlots(DatabaseTestCase):
    async def generate(self, template, horizon_days=14):
        async with self.session_maker() as session:
            result = await generate_slots(
                session, SPECIALIST, SPECIALIST_EMAIL, template, horizon_days=horizon_days, now=NOW
            )
            await session.commit()
        return result

    async def all_slots(self):
        async with self.session_maker() as session:
            return await list_slots(session, SPECIALIST, now=NOW)

    async def test_mondays_over_two_weeks(self):
        result = await self.generate(monday_template(capacity=2))

        self.assertEqual((result.count, result.skipped), (2, 0))
        slots = await self.all_slots()
        self.assertEqual([s.date for s in slots], [date(2030, 1, 7), date(2030, 1, 14)])
        for slot in slots:
            self.assertEqual((slot.start_time, slot.end_time), (time(9, 0), time(17, 0)))
            self.assertEqual(slot.total_capacity, 2)
            self.assertEqual(slot.duration_minutes, 480)
            self.assertEqual(slot.specialist_email, SPECIALIST_EMAIL)

    async def test_rerun_creates_nothing(self):
        template = monday_template()
        first = await self.generate(template, horizon_days=90)
        after_first = [(s.id, s.date) for s in await self.all_slots()]
        again = await self.generate(template, horizon_days=90)

        self.assertEqual(first.count, 13)
        self.assertEqual((again.count, again.skipped), (0, first.count))
        self.assertEqual([(s.id, s.date) for s in await self.all_slots()], after_first)

    async def test_existing_slot_is_skipped(self):
        await self.make_slot(window(date(2030, 1, 7), "12:00", "13:00"))
        result = await self.generate(monday_template())

        self.assertEqual((result.count, result.skipped), (1, 1))
        self.assertEqual(len(await self.all_slots()), 2)

    async def test_failed_window_keeps_the_others(self):
        real_create = generation_service.create_slot

        async def reject_second_monday(session, *args, **kwargs):
            # Fails after the row was written, so only the savepoint can undo it
            slot = await real_create(session, *args, **kwargs)
            if slot.date == date(2030, 1, 14):
                raise SlotError(ErrorKind.INVALID_RANGE, "Rejected")
            return slot

        with mock.patch.object(generation_service, "create_slot", reject_second_monday):
            result = await self.generate(monday_template(), horizon_days=21)

        self.assertEqual((result.count, result.skipped, result.failed), (2, 0, 1))
        self.assertEqual([s.date for s in await self.all_slots()], [date(2030, 1, 7), date(2030, 1, 21)])

    async def test_split_by_slot_duration(self):
        template = monday_template()
        set_day(template, Weekday.MONDAY, True, time(9, 0), time(11, 0))
        update_settings(template, slot_duration_minutes=45, buffer_minutes=15)

        result = await self.generate(template)

        self.assertEqual(result.count, 4)
        slots = await self.all_slots()
        self.assertEqual(
            [(s.date.day, s.start_time) for s in slots],
            [(7, time(9, 0)), (7, time(10, 0)), (14, time(9, 0)), (14, time(10, 0))],
        )

    async def test_windows_already_over_are_dropped(self):
        template = AvailabilityTemplate(specialist_id=SPECIALIST, timezone="UTC")
        # NOW is Tuesday 12:00: the morning window is gone, the midday one is running
        set_day(template, Weekday.TUESDAY, True, time(9, 0), time(11, 0))
        result = await self.generate(template, horizon_days=7)
        self.assertEqual(result.count, 1)
        self.assertEqual([s.date for s in await self.all_slots()], [date(2030, 1, 8)])

        set_day(template, Weekday.TUESDAY, True, time(11, 0), time(13, 0))
        result = await self.generate(template, horizon_days=1)
        self.assertEqual(result.count, 1)

    async def test_template_timezone_applies(self):
        template = monday_template()
        update_settings(template, timezone="Asia/Tokyo")
        await self.generate(template)
        slots = await self.all_slots()
        self.assertTrue(all(s.timezone == "Asia/Tokyo" for s in slots))

    async def test_no_availability(self):
        with self.assertRaises(SlotError) as ctx:
            await self.generate(None)
        self.assertEqual(ctx.exception.kind, ErrorKind.NO_AVAILABILITY)

        with self.assertRaises(SlotError) as ctx:
            await self.generate(AvailabilityTemplate(specialist_id=SPECIALIST, timezone="UTC"))
        self.assertEqual(ctx.exception.kind, ErrorKind.NO_AVAILABILITY)

    async def test_horizon_bounds(self):
        for days in (0, settings.max_generation_days + 1):
            with self.assertRaises(SlotError) as ctx:
                await self.generate(monday_template(), horizon_days=days)
            self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_RANGE)
        self.assertEqual(await self.all_slots(), [])
