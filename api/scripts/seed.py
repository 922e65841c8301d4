"""Seed the database with studio test data.

Run with: python -m scripts.seed
Creates the tables, a handful of members with default and custom caps, and a
couple of upcoming reservations booked through the normal workflow.
"""

import asyncio
from datetime import UTC, datetime, time, timedelta

from sqlalchemy import select

from studiobook.core.config import STUDIO_TZ
from studiobook.core.database import async_session_factory, engine
from studiobook.models import Base, Member
from studiobook.services import booking, wallet

MEMBERS = [
    {"name": "Test Member", "email": "member@example.com"},
    {"name": "Weekend Regular", "email": "weekender@example.com", "weekend_slots_max": 16},
    {"name": "Light User", "email": "light@example.com", "monthly_points_max": 20},
    {"name": "Resident Artist", "email": "resident@example.com", "monthly_points_max": 80},
]


def _next_weekday(weekday: int, at: time) -> datetime:
    """Next occurrence (at least two days out) of weekday at a local time."""
    day = datetime.now(STUDIO_TZ).date() + timedelta(days=2)
    while day.weekday() != weekday:
        day += timedelta(days=1)
    return datetime.combine(day, at, tzinfo=STUDIO_TZ)


async def seed():
    # Create tables (in dev; production uses Alembic migrations)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        # Check if already seeded
        result = await db.execute(select(Member).where(Member.email == "member@example.com"))
        if result.scalar_one_or_none():
            print("Database already seeded - skipping.")
            return

        today = datetime.now(STUDIO_TZ).date()
        members = []
        for member_data in MEMBERS:
            members.append(await wallet.open_wallet(db, today=today, **member_data))
        await db.commit()

        # A weekday daytime session and a Saturday session
        monday = _next_weekday(0, time(10, 0))
        saturday = _next_weekday(5, time(14, 0))
        weekday_booking = await booking.book(db, members[0].id, monday, monday + timedelta(hours=2))
        weekend_booking = await booking.book(db, members[1].id, saturday, saturday + timedelta(hours=1, minutes=30))

        print(f"Seeded {len(MEMBERS)} members:")
        for member in members:
            print(f"  #{member.id} {member.name} ({member.monthly_points_max} pts, {member.weekend_slots_max} weekend slots)")
        print("Reservations:")
        for reservation in (weekday_booking, weekend_booking):
            start = reservation.start_time.astimezone(STUDIO_TZ)
            print(f"  #{reservation.id} {start:%a %d %b %H:%M} for {reservation.duration_minutes} min, {reservation.points_cost} pts")

    await engine.dispose()
    print(f"Done at {datetime.now(UTC):%H:%M:%S} UTC.")


if __name__ == "__main__":
    asyncio.run(seed())
