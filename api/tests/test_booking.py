"""Tests for the booking workflow: book, cancel and their atomicity."""

import asyncio
from datetime import timedelta

import pytest
from conftest import NOW, at
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from studiobook.core.config import settings
from studiobook.core.database import async_session_factory, run_in_transaction
from studiobook.core.errors import (
    AlreadyCancelledError,
    InsufficientPointsError,
    MisalignedSlotError,
    NotFoundError,
    PastSlotError,
    PeakQuotaExceededError,
    SlotConflictError,
    StoreContentionError,
)
from studiobook.models import PointsTransaction, Reservation, ReservationCell, ReservationStatus, TransactionType
from studiobook.services import booking, wallet


async def _member(db, points=None, weekend_slots_used=0) -> int:
    member = await wallet.open_wallet(db, "Test Member", None, today=NOW.date())
    if points is not None:
        member.monthly_points = points
    member.weekend_slots_used = weekend_slots_used
    await db.commit()
    return member.id


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


# ---------------------------------------------------------------------------
# Book
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_book_charges_and_records(db):
    member_id = await _member(db)
    reservation = await booking.book(db, member_id, at(16, 10), at(16, 11), now=NOW)

    assert reservation.id is not None
    assert reservation.status == ReservationStatus.CONFIRMED
    assert reservation.points_cost == 2
    assert reservation.peak_cells == 0
    assert reservation.duration_minutes == 60
    assert reservation.start_time == at(16, 10)

    fresh = await wallet.get_wallet(db, member_id)
    assert fresh.monthly_points == 38
    assert await _count(db, ReservationCell) == 2

    txn = (await db.execute(select(PointsTransaction))).scalar_one()
    assert txn.transaction_type == TransactionType.CHARGE
    assert txn.reservation_id == reservation.id


@pytest.mark.asyncio
async def test_book_weekend_consumes_peak_quota(db):
    member_id = await _member(db)
    reservation = await booking.book(db, member_id, at(21, 14), at(21, 15, 30), now=NOW)
    assert reservation.points_cost == 9
    assert reservation.peak_cells == 3

    fresh = await wallet.get_wallet(db, member_id)
    assert fresh.monthly_points == 31
    assert fresh.weekend_slots_used == 3


@pytest.mark.asyncio
async def test_adjacent_bookings_both_succeed(db):
    first_id = await _member(db)
    second_id = await _member(db)
    await booking.book(db, first_id, at(16, 10), at(16, 10, 30), now=NOW)
    await booking.book(db, second_id, at(16, 10, 30), at(16, 11), now=NOW)
    assert await _count(db, Reservation) == 2


@pytest.mark.asyncio
async def test_overlapping_booking_rejected(db):
    first_id = await _member(db)
    second_id = await _member(db)
    await booking.book(db, first_id, at(16, 10), at(16, 10, 30), now=NOW)
    await booking.book(db, second_id, at(16, 10, 30), at(16, 11), now=NOW)

    with pytest.raises(MisalignedSlotError):
        await booking.book(db, second_id, at(16, 10, 15), at(16, 10, 45), now=NOW)

    with pytest.raises(SlotConflictError) as exc_info:
        await booking.book(db, second_id, at(16, 9, 30), at(16, 10, 30), now=NOW)
    assert exc_info.value.conflict.start_time == at(16, 10)


@pytest.mark.asyncio
async def test_book_in_the_past(db):
    member_id = await _member(db)
    with pytest.raises(PastSlotError):
        await booking.book(db, member_id, at(16, 10), at(16, 11), now=at(16, 10, 5))


@pytest.mark.asyncio
async def test_insufficient_points_changes_nothing(db):
    member_id = await _member(db, points=2)
    with pytest.raises(InsufficientPointsError):
        await booking.book(db, member_id, at(21, 10), at(21, 10, 30), now=NOW)

    fresh = await wallet.get_wallet(db, member_id)
    assert fresh.monthly_points == 2
    assert fresh.weekend_slots_used == 0
    assert await _count(db, Reservation) == 0
    assert await _count(db, ReservationCell) == 0
    assert await _count(db, PointsTransaction) == 0


@pytest.mark.asyncio
async def test_peak_quota_exhausted(db):
    member_id = await _member(db, weekend_slots_used=12)
    with pytest.raises(PeakQuotaExceededError):
        await booking.book(db, member_id, at(20, 17), at(20, 17, 30), now=NOW)

    # Off-peak bookings still go through
    await booking.book(db, member_id, at(20, 16), at(20, 17), now=NOW)
    assert (await wallet.get_wallet(db, member_id)).monthly_points == 38


@pytest.mark.asyncio
async def test_book_unknown_member(db):
    with pytest.raises(NotFoundError):
        await booking.book(db, 999, at(16, 10), at(16, 11), now=NOW)
    assert await _count(db, Reservation) == 0


@pytest.mark.asyncio
async def test_concurrent_bookings_for_same_range(db):
    first_id = await _member(db)
    second_id = await _member(db)

    async def attempt(member_id):
        async with async_session_factory() as session:
            return await booking.book(session, member_id, at(21, 10), at(21, 11), now=NOW)

    results = await asyncio.gather(attempt(first_id), attempt(second_id), return_exceptions=True)
    booked = [r for r in results if isinstance(r, Reservation)]
    failed = [r for r in results if isinstance(r, Exception)]

    assert len(booked) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], SlotConflictError)
    assert await _count(db, Reservation) == 1

    # Only the winner paid
    wallets = [await wallet.get_wallet(db, m) for m in (first_id, second_id)]
    assert sorted(w.monthly_points for w in wallets) == [34, 40]


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_with_notice_restores_wallet(db):
    member_id = await _member(db)
    reservation = await booking.book(db, member_id, at(21, 10), at(21, 12), now=NOW)
    assert (await wallet.get_wallet(db, member_id)).monthly_points == 28

    result = await booking.cancel(db, reservation.id, now=NOW)

    assert result.refund.fraction == 1.0
    assert result.refund.points == 12
    assert result.reservation.status == ReservationStatus.CANCELLED
    assert result.reservation.refunded_points == 12
    assert result.reservation.cancelled_at is not None

    fresh = await wallet.get_wallet(db, member_id)
    assert fresh.monthly_points == 40
    assert fresh.weekend_slots_used == 0
    assert await _count(db, ReservationCell) == 0


@pytest.mark.asyncio
async def test_refund_tiers(db):
    member_id = await _member(db)
    early = await booking.book(db, member_id, at(16, 17), at(16, 18), now=NOW)
    late = await booking.book(db, member_id, at(17, 17), at(17, 18), now=NOW)
    assert early.points_cost == late.points_cost == 4

    full = await booking.cancel(db, early.id, now=at(16, 17) - timedelta(hours=30))
    half = await booking.cancel(db, late.id, now=at(17, 17) - timedelta(hours=10))

    assert full.refund.points == 4
    assert half.refund.points == 2
    assert half.refund.fraction == 0.5


@pytest.mark.asyncio
async def test_late_refund_rounds_up_and_returns_peak_cells(db):
    member_id = await _member(db)
    reservation = await booking.book(db, member_id, at(21, 10), at(21, 10, 30), now=NOW)

    result = await booking.cancel(db, reservation.id, now=at(21, 8))
    assert result.refund.points == 2  # ceil(3 * 0.5)
    assert result.refund.peak_cells == 1

    fresh = await wallet.get_wallet(db, member_id)
    assert fresh.monthly_points == 39
    assert fresh.weekend_slots_used == 0


@pytest.mark.asyncio
async def test_exactly_24_hours_is_full_refund(db):
    member_id = await _member(db)
    reservation = await booking.book(db, member_id, at(16, 10), at(16, 11), now=NOW)
    result = await booking.cancel(db, reservation.id, now=at(15, 10))
    assert result.refund.fraction == 1.0


@pytest.mark.asyncio
async def test_cancel_after_start_refunds_half(db):
    member_id = await _member(db)
    reservation = await booking.book(db, member_id, at(16, 10), at(16, 12), now=NOW)
    result = await booking.cancel(db, reservation.id, now=at(16, 11))
    assert result.refund.hours_until_start < 0
    assert result.refund.points == 2


@pytest.mark.asyncio
async def test_cancel_twice(db):
    member_id = await _member(db)
    reservation = await booking.book(db, member_id, at(16, 10), at(16, 11), now=NOW)
    await booking.cancel(db, reservation.id, now=NOW)

    with pytest.raises(AlreadyCancelledError):
        await booking.cancel(db, reservation.id, now=NOW)
    assert (await wallet.get_wallet(db, member_id)).monthly_points == 40


@pytest.mark.asyncio
async def test_cancel_unknown_reservation(db):
    with pytest.raises(NotFoundError):
        await booking.cancel(db, 999, now=NOW)


@pytest.mark.asyncio
async def test_cancelled_range_can_be_rebooked(db):
    first_id = await _member(db)
    second_id = await _member(db)
    reservation = await booking.book(db, first_id, at(16, 10), at(16, 11), now=NOW)
    await booking.cancel(db, reservation.id, now=NOW)

    rebooked = await booking.book(db, second_id, at(16, 10), at(16, 11), now=NOW)
    assert rebooked.member_id == second_id


@pytest.mark.asyncio
async def test_quote_cancellation_mutates_nothing(db):
    member_id = await _member(db)
    reservation = await booking.book(db, member_id, at(16, 17), at(16, 18), now=NOW)

    quote = await booking.quote_cancellation(db, reservation.id, now=at(16, 12))
    assert quote.points == 2
    assert quote.hours_until_start == 5

    assert (await booking.get_reservation(db, reservation.id)).status == ReservationStatus.CONFIRMED
    assert (await wallet.get_wallet(db, member_id)).monthly_points == 36


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_reservations_window(db):
    member_id = await _member(db)
    await booking.book(db, member_id, at(16, 10), at(16, 11), now=NOW)
    await booking.book(db, member_id, at(16, 14), at(16, 15), now=NOW)
    cancelled = await booking.book(db, member_id, at(16, 16), at(16, 17), now=NOW)
    await booking.cancel(db, cancelled.id, now=NOW)

    found = await booking.list_reservations(db, at(16, 10, 30), at(16, 18))
    assert [r.start_time for r in found] == [at(16, 10), at(16, 14)]
    assert await booking.list_reservations(db, at(16, 11), at(16, 14)) == []


@pytest.mark.asyncio
async def test_list_member_reservations(db):
    member_id = await _member(db)
    past = await booking.book(db, member_id, at(16, 10), at(16, 11), now=NOW)
    upcoming = await booking.book(db, member_id, at(17, 10), at(17, 11), now=NOW)

    assert [r.id for r in await booking.list_member_reservations(db, member_id, now=at(16, 12))] == [upcoming.id]
    history = await booking.list_member_reservations(db, member_id, now=at(16, 12), upcoming_only=False)
    assert [r.id for r in history] == [upcoming.id, past.id]


# ---------------------------------------------------------------------------
# Store contention
# ---------------------------------------------------------------------------


def _locked() -> OperationalError:
    return OperationalError("UPDATE members", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_run_in_transaction_retries_contention(db, monkeypatch):
    monkeypatch.setattr(settings, "store_retry_backoff_seconds", 0.0)
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise _locked()
        return "ok"

    assert await run_in_transaction(db, flaky, "test") == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_run_in_transaction_gives_up(db, monkeypatch):
    monkeypatch.setattr(settings, "store_retry_backoff_seconds", 0.0)
    calls = []

    async def always_locked():
        calls.append(1)
        raise _locked()

    with pytest.raises(StoreContentionError):
        await run_in_transaction(db, always_locked, "test")
    assert len(calls) == settings.store_retry_attempts


@pytest.mark.asyncio
async def test_run_in_transaction_does_not_retry_business_errors(db):
    calls = []

    async def rejected():
        calls.append(1)
        raise SlotConflictError()

    with pytest.raises(SlotConflictError):
        await run_in_transaction(db, rejected, "test")
    assert len(calls) == 1
