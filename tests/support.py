import tempfile
import unittest
from datetime import UTC, date, datetime, time, timedelta

from consulting_slots.core.db import build_engine, build_session_maker, init_db
from consulting_slots.models.slot import ConsultingSlot
from consulting_slots.services.slot_service import create_slot, get_bookings_for_slots
from consulting_slots.services.timewindow import TimeWindow

# Tuesday
NOW = datetime(2030, 1, 1, 12, 0, tzinfo=UTC)
TODAY = NOW.date()
SPECIALIST = "spec-1"
SPECIALIST_EMAIL = "spec@example.com"


def window(day: date, start: str, end: str, tz: str = "UTC") -> TimeWindow:
    return TimeWindow(day, time.fromisoformat(start), time.fromisoformat(end), tz)


def days_ahead(n: int) -> date:
    return TODAY + timedelta(days=n)


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Each test gets its own in-memory database."""

    def database_url(self) -> str:
        return "sqlite+aiosqlite://"

    async def asyncSetUp(self) -> None:
        self.engine = build_engine(self.database_url())
        await init_db(self.engine)
        self.session_maker = build_session_maker(self.engine)

    async def asyncTearDown(self) -> None:
        await self.engine.dispose()

    async def make_slot(
        self,
        win: TimeWindow,
        capacity: int = 1,
        specialist_id: str = SPECIALIST,
        now: datetime = NOW,
    ) -> ConsultingSlot:
        async with self.session_maker() as session:
            slot = await create_slot(
                session, specialist_id, SPECIALIST_EMAIL, win, total_capacity=capacity, now=now
            )
            await session.commit()
            return slot

    async def fetch_slot(self, slot_id: int) -> ConsultingSlot | None:
        async with self.session_maker() as session:
            return await session.get(ConsultingSlot, slot_id)

    async def fetch_customer_ids(self, slot_id: int) -> list[str]:
        async with self.session_maker() as session:
            bookings = await get_bookings_for_slots(session, [slot_id])
            return [b.customer_id for b in bookings[slot_id]]


class FileDatabaseTestCase(DatabaseTestCase):
    """A database file, so concurrent sessions hold separate connections."""

    async def asyncSetUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        await super().asyncSetUp()

    def database_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.tmpdir.name}/slots.db"

    async def asyncTearDown(self) -> None:
        await super().asyncTearDown()
        self.tmpdir.cleanup()
