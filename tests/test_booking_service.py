"""
Tests for services/booking_service.py

Capacity under concurrency, failure ordering, cancellation rules and events.
"""

import asyncio
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consulting_slots.core.errors import ErrorKind, SlotError
from consulting_slots.models.slot import SlotStatus
from consulting_slots.services.booking_service import Actor, BookingEngine
from consulting_slots.services.events import BookingCancelled, BookingCreated, EventBus
from consulting_slots.services.slot_service import edit_slot

from support import NOW, SPECIALIST, TODAY, DatabaseTestCase, FileDatabaseTestCase, days_ahead, window


class SlowCommitSession(AsyncSession):
    async def commit(self) -> None:
        await asyncio.sleep(0.2)
        await super().commit()


class BookingTestCase(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.events: list = []
        bus = EventBus()
        bus.subscribe(BookingCreated, self.events.append)
        bus.subscribe(BookingCancelled, self.events.append)
        self.engine_ = BookingEngine(
            self.session_maker,
            events=bus,
            cancellation_lead=timedelta(hours=24),
            timeout_seconds=5,
            clock=lambda: NOW,
        )

    async def book(self, slot_id: int, customer_id: str, **kwargs):
        return await self.engine_.book(
            slot_id, customer_id, f"{customer_id}@example.com", customer_id.title(), **kwargs
        )

    async def assertFails(self, kind: ErrorKind, coro):
        with self.assertRaises(SlotError) as ctx:
            await coro
        self.assertEqual(ctx.exception.kind, kind)
        return ctx.exception


class TestBook(BookingTestCase):
    async def test_book_returns_receipt(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        receipt = await self.book(slot.id, "cust-a")

        self.assertEqual(receipt.slot_id, slot.id)
        self.assertEqual(receipt.customer_email, "cust-a@example.com")
        self.assertEqual(receipt.window, slot.window)
        stored = await self.fetch_slot(slot.id)
        self.assertEqual(stored.booked_count, 1)
        self.assertTrue(stored.is_fully_booked)

    async def test_concurrent_bookings_fill_capacity_exactly(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"), capacity=3)
        customers = [f"cust-{i}" for i in range(8)]

        results = await asyncio.gather(
            *(self.book(slot.id, c) for c in customers), return_exceptions=True
        )

        booked = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(booked), 3)
        self.assertEqual(len(failed), 5)
        self.assertTrue(all(isinstance(e, SlotError) and e.kind == ErrorKind.SLOT_FULL for e in failed))

        stored = await self.fetch_slot(slot.id)
        self.assertEqual(stored.booked_count, 3)
        self.assertEqual(
            sorted(await self.fetch_customer_ids(slot.id)), sorted(r.customer_id for r in booked)
        )

    async def test_two_customers_one_seat(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        results = await asyncio.gather(
            self.book(slot.id, "cust-a"), self.book(slot.id, "cust-b"), return_exceptions=True
        )
        winners = [r for r in results if not isinstance(r, Exception)]
        self.assertEqual(len(winners), 1)
        losers = [r for r in results if isinstance(r, Exception)]
        self.assertEqual([e.kind for e in losers], [ErrorKind.SLOT_FULL])
        self.assertEqual((await self.fetch_slot(slot.id)).booked_count, 1)
        self.assertEqual(await self.fetch_customer_ids(slot.id), [winners[0].customer_id])

    async def test_duplicate_booking(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"), capacity=2)
        await self.book(slot.id, "cust-a")
        await self.assertFails(ErrorKind.DUPLICATE_BOOKING, self.book(slot.id, "cust-a"))
        self.assertEqual((await self.fetch_slot(slot.id)).booked_count, 1)

    async def test_unknown_slot(self):
        await self.assertFails(ErrorKind.NOT_FOUND, self.book(404, "cust-a"))

    async def test_inactive_slot(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        async with self.session_maker() as session:
            await edit_slot(session, slot.id, new_status=SlotStatus.INACTIVE, now=NOW)
            await session.commit()
        await self.assertFails(ErrorKind.INACTIVE, self.book(slot.id, "cust-a"))

    async def test_started_slot(self):
        slot = await self.make_slot(window(TODAY, "08:00", "13:00"))
        await self.assertFails(ErrorKind.PAST_SLOT, self.book(slot.id, "cust-a"))

    async def test_full_slot_reported_after_other_checks(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        await self.book(slot.id, "cust-a")
        # Same customer on a full slot is a duplicate, not SLOT_FULL
        await self.assertFails(ErrorKind.DUPLICATE_BOOKING, self.book(slot.id, "cust-a"))
        await self.assertFails(ErrorKind.SLOT_FULL, self.book(slot.id, "cust-b"))

    async def test_timeout_leaves_slot_untouched(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        async with self.engine_._lock_for(slot.id):
            await self.assertFails(ErrorKind.TIMEOUT, self.book(slot.id, "cust-a", timeout=0.05))
        self.assertEqual((await self.fetch_slot(slot.id)).booked_count, 0)
        self.assertEqual(self.events, [])

        # The slot is usable again afterwards
        await self.book(slot.id, "cust-a")

    async def test_slow_commit_is_not_a_timeout(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        engine = BookingEngine(
            async_sessionmaker(self.engine, class_=SlowCommitSession, expire_on_commit=False),
            events=self.engine_.events,
            timeout_seconds=0.05,
            clock=lambda: NOW,
        )

        receipt = await engine.book(slot.id, "cust-a", "cust-a@example.com", "Cust-A")

        self.assertEqual(await self.fetch_customer_ids(slot.id), [receipt.customer_id])
        self.assertEqual((await self.fetch_slot(slot.id)).booked_count, 1)
        self.assertEqual([e.booking_id for e in self.events], [receipt.booking_id])

    async def test_created_event(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        receipt = await self.book(slot.id, "cust-a")

        self.assertEqual(len(self.events), 1)
        event = self.events[0]
        self.assertIsInstance(event, BookingCreated)
        self.assertEqual(event.booking_id, receipt.booking_id)
        self.assertEqual(event.specialist_id, SPECIALIST)
        self.assertEqual(event.customer_name, "Cust-A")

    async def test_failed_booking_publishes_nothing(self):
        await self.assertFails(ErrorKind.NOT_FOUND, self.book(404, "cust-a"))
        self.assertEqual(self.events, [])

    async def test_deferred_handlers_run_after_book_returns(self):
        deferred = []
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        receipt = await self.book(
            slot.id, "cust-a", defer=lambda fn, *args: deferred.append((fn, args))
        )
        self.assertEqual(self.events, [])

        fn, args = deferred[0]
        await fn(*args)
        self.assertEqual([e.booking_id for e in self.events], [receipt.booking_id])

    async def test_failing_handler_keeps_booking(self):
        def explode(event):
            raise RuntimeError("mail server down")

        self.engine_.events.subscribe(BookingCreated, explode)
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        with self.assertLogs("consulting_slots.services.events", level="ERROR"):
            await self.book(slot.id, "cust-a")
        self.assertEqual(await self.fetch_customer_ids(slot.id), ["cust-a"])


class TestCancel(BookingTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        self.receipt = await self.book(self.slot.id, "cust-a")
        self.events.clear()

    async def test_customer_cancels_then_other_books(self):
        event = await self.engine_.cancel(self.slot.id, "cust-a", "Schedule changed", Actor("cust-a"))

        self.assertEqual(event.booking_id, self.receipt.booking_id)
        self.assertEqual(event.cancelled_by, "cust-a")
        self.assertEqual(self.events, [event])
        self.assertEqual((await self.fetch_slot(self.slot.id)).booked_count, 0)

        await self.book(self.slot.id, "cust-b")
        self.assertEqual(await self.fetch_customer_ids(self.slot.id), ["cust-b"])

    async def test_specialist_cancels_by_booking_id(self):
        event = await self.engine_.cancel(
            self.slot.id, self.receipt.booking_id, None, Actor(SPECIALIST)
        )
        self.assertEqual(event.customer_id, "cust-a")
        self.assertEqual(await self.fetch_customer_ids(self.slot.id), [])

    async def test_second_cancel_not_found(self):
        await self.engine_.cancel(self.slot.id, "cust-a", None, Actor("cust-a"))
        await self.assertFails(
            ErrorKind.NOT_FOUND, self.engine_.cancel(self.slot.id, "cust-a", None, Actor("cust-a"))
        )
        self.assertEqual((await self.fetch_slot(self.slot.id)).booked_count, 0)

    async def test_stranger_forbidden(self):
        await self.assertFails(
            ErrorKind.FORBIDDEN,
            self.engine_.cancel(self.slot.id, "cust-a", None, Actor("cust-z")),
        )
        self.assertEqual((await self.fetch_slot(self.slot.id)).booked_count, 1)

    async def test_unknown_slot(self):
        await self.assertFails(
            ErrorKind.NOT_FOUND, self.engine_.cancel(999, "cust-a", None, Actor("cust-a"))
        )

    async def test_too_late(self):
        soon = await self.make_slot(window(TODAY, "18:00", "19:00"))
        await self.book(soon.id, "cust-a")
        for actor in (Actor("cust-a"), Actor(SPECIALIST)):
            await self.assertFails(
                ErrorKind.TOO_LATE, self.engine_.cancel(soon.id, "cust-a", None, actor)
            )
        self.assertEqual(await self.fetch_customer_ids(soon.id), ["cust-a"])


class TestMeetingRef(BookingTestCase):
    async def test_attach(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        receipt = await self.book(slot.id, "cust-a")

        booking = await self.engine_.attach_meeting_ref(
            slot.id, receipt.booking_id, "meet-abc", Actor(SPECIALIST)
        )
        self.assertEqual(booking.meeting_ref, "meet-abc")

        await self.assertFails(
            ErrorKind.FORBIDDEN,
            self.engine_.attach_meeting_ref(slot.id, receipt.booking_id, "x", Actor("cust-a")),
        )
        await self.assertFails(
            ErrorKind.NOT_FOUND,
            self.engine_.attach_meeting_ref(slot.id, 999, "x", Actor(SPECIALIST)),
        )


class TestAcrossWorkers(FileDatabaseTestCase):
    """Engines with separate in-process locks, as in separate workers."""

    def make_engine(self) -> BookingEngine:
        return BookingEngine(self.session_maker, clock=lambda: NOW)

    async def test_last_seat_goes_once(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"))
        first, second = self.make_engine(), self.make_engine()

        results = await asyncio.gather(
            first.book(slot.id, "cust-a", "cust-a@example.com", "A"),
            second.book(slot.id, "cust-b", "cust-b@example.com", "B"),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        self.assertEqual(len(winners), 1)
        self.assertEqual([e.kind for e in losers], [ErrorKind.SLOT_FULL])
        self.assertEqual((await self.fetch_slot(slot.id)).booked_count, 1)
        self.assertEqual(await self.fetch_customer_ids(slot.id), [winners[0].customer_id])

    async def test_capacity_holds_across_engines(self):
        slot = await self.make_slot(window(days_ahead(3), "10:00", "11:00"), capacity=2)
        engines = [self.make_engine() for _ in range(3)]

        results = await asyncio.gather(
            *(
                engines[i % 3].book(slot.id, f"cust-{i}", f"cust-{i}@example.com", f"C{i}")
                for i in range(6)
            ),
            return_exceptions=True,
        )

        booked = [r for r in results if not isinstance(r, Exception)]
        self.assertEqual(len(booked), 2)
        self.assertTrue(
            all(e.kind == ErrorKind.SLOT_FULL for e in results if isinstance(e, Exception))
        )
        self.assertEqual((await self.fetch_slot(slot.id)).booked_count, 2)
