"""Booking workflow: book and cancel as single atomic units.

book:   Proposed -> Validated -> Priced -> Charged -> Committed, or Rejected at any gate.
cancel: load -> compute refund tier -> mark cancelled + release cells + refund wallet.

Each public operation runs in one transaction via run_in_transaction, which
commits the reservation change and the wallet change together and retries the
whole unit on transient store contention. Business errors are never retried.
"""

import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.config import settings
from studiobook.core.database import run_in_transaction
from studiobook.core.errors import (
    AlreadyCancelledError,
    BookingError,
    NotFoundError,
    SlotConflictError,
)
from studiobook.models.reservation import Reservation, ReservationCell, ReservationStatus
from studiobook.services import wallet
from studiobook.services.booking_rules import find_conflict, validate_slot_range
from studiobook.services.pricing import price_range, to_local

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefundQuote:
    hours_until_start: float
    fraction: float
    points: int
    peak_cells: int


@dataclass(frozen=True)
class Cancellation:
    reservation: Reservation
    refund: RefundQuote


def _utc(instant: datetime) -> datetime:
    return to_local(instant).astimezone(UTC)


def _now(now: datetime | None) -> datetime:
    return datetime.now(UTC) if now is None else _utc(now)


async def list_reservations(
    db: AsyncSession,
    window_start: datetime,
    window_end: datetime,
) -> list[Reservation]:
    """Confirmed reservations intersecting [window_start, window_end), earliest first."""
    result = await db.execute(
        select(Reservation)
        .where(
            Reservation.status == ReservationStatus.CONFIRMED,
            Reservation.start_time < _utc(window_end),
            Reservation.end_time > _utc(window_start),
        )
        .order_by(Reservation.start_time)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_member_reservations(
    db: AsyncSession,
    member_id: int,
    *,
    now: datetime | None = None,
    upcoming_only: bool = True,
    limit: int = 50,
) -> list[Reservation]:
    await wallet.get_wallet(db, member_id)

    stmt = select(Reservation).where(Reservation.member_id == member_id)
    if upcoming_only:
        stmt = stmt.where(
            Reservation.status == ReservationStatus.CONFIRMED,
            Reservation.end_time > _now(now),
        ).order_by(Reservation.start_time)
    else:
        stmt = stmt.order_by(Reservation.start_time.desc())

    result = await db.execute(stmt.limit(limit))
    return list(result.scalars().all())


async def get_reservation(db: AsyncSession, reservation_id: int) -> Reservation:
    result = await db.execute(
        select(Reservation).where(Reservation.id == reservation_id).execution_options(populate_existing=True)
    )
    reservation = result.scalar_one_or_none()
    if reservation is None:
        raise NotFoundError(f"Reservation #{reservation_id} not found.")
    return reservation


# ---------------------------------------------------------------------------
# Book
# ---------------------------------------------------------------------------


async def book(
    db: AsyncSession,
    member_id: int,
    start: datetime,
    end: datetime,
    now: datetime | None = None,
) -> Reservation:
    """Validate, price, charge and record a reservation atomically.

    Raises the validator's errors, InsufficientPointsError /
    PeakQuotaExceededError from the wallet, NotFoundError for an unknown
    member, or StoreContentionError once retries are exhausted.
    """
    now = _now(now)

    async def attempt() -> Reservation:
        # Proposed -> Validated
        existing = await list_reservations(db, start, end) if to_local(start) < to_local(end) else []
        validate_slot_range(existing, start, end, now)

        # Validated -> Priced
        price = price_range(start, end, with_cells=True)

        # Priced -> Charged
        txn = await wallet.charge(db, member_id, price.total_cost, price.peak_cells)

        # Charged -> Committed
        reservation = Reservation(
            member_id=member_id,
            start_time=_utc(start),
            end_time=_utc(end),
            points_cost=price.total_cost,
            peak_cells=price.peak_cells,
            status=ReservationStatus.CONFIRMED,
        )
        db.add(reservation)
        await db.flush()

        db.add_all(
            ReservationCell(reservation_id=reservation.id, cell_start=cell_start.astimezone(UTC))
            for cell_start, _ in price.cells
        )
        try:
            await db.flush()
        except IntegrityError as exc:
            # A concurrent booking committed an overlapping cell after our check
            raise SlotConflictError() from exc

        txn.reservation_id = reservation.id
        txn.description = f"Charge for reservation #{reservation.id}"
        return reservation

    try:
        reservation = await run_in_transaction(db, attempt, "book")
    except SlotConflictError as exc:
        if exc.conflict is None:
            logger.info("Booking race lost by member #%s for %s-%s", member_id, start, end)
        else:
            logger.info("Booking rejected for member #%s: %s", member_id, exc.rule)
        # The rollback expired whatever was loaded; reload the reservation that holds the range
        winners = await list_reservations(db, start, end)
        raise SlotConflictError(find_conflict(winners, start, end)) from exc
    except BookingError as exc:
        logger.info("Booking rejected for member #%s: %s", member_id, exc.rule)
        raise

    logger.info(
        "Reservation #%s booked by member #%s: %s-%s, %s pts, %s peak cells",
        reservation.id,
        member_id,
        reservation.start_time.isoformat(),
        reservation.end_time.isoformat(),
        reservation.points_cost,
        reservation.peak_cells,
    )
    return reservation


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------


def refund_for(reservation: Reservation, now: datetime) -> RefundQuote:
    """Full refund with at least 24h notice, otherwise half (rounded up). Peak cells always come back in full."""
    hours_until_start = (reservation.start_time - _utc(now)).total_seconds() / 3600
    if hours_until_start >= settings.full_refund_notice_hours:
        fraction = 1.0
    else:
        fraction = settings.late_cancel_refund_fraction
    return RefundQuote(
        hours_until_start=hours_until_start,
        fraction=fraction,
        points=math.ceil(reservation.points_cost * fraction),
        peak_cells=reservation.peak_cells,
    )


async def quote_cancellation(db: AsyncSession, reservation_id: int, now: datetime | None = None) -> RefundQuote:
    """What cancelling right now would refund. Mutates nothing."""
    reservation = await get_reservation(db, reservation_id)
    if reservation.status != ReservationStatus.CONFIRMED:
        raise AlreadyCancelledError(f"Reservation #{reservation_id} is already cancelled.")
    return refund_for(reservation, _now(now))


async def cancel(db: AsyncSession, reservation_id: int, now: datetime | None = None) -> Cancellation:
    """Cancel a confirmed reservation and refund the wallet in one transaction."""
    now = _now(now)

    async def attempt() -> Cancellation:
        reservation = await get_reservation(db, reservation_id)
        if reservation.status != ReservationStatus.CONFIRMED:
            raise AlreadyCancelledError(f"Reservation #{reservation_id} is already cancelled.")

        quote = refund_for(reservation, now)

        # Conditional on still being confirmed, so two racing cancels refund once
        result = await db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.status == ReservationStatus.CONFIRMED)
            .values(status=ReservationStatus.CANCELLED, cancelled_at=now, refunded_points=quote.points)
            .returning(Reservation.id)
            .execution_options(synchronize_session=False)
        )
        if result.one_or_none() is None:
            raise AlreadyCancelledError(f"Reservation #{reservation_id} is already cancelled.")

        await db.execute(delete(ReservationCell).where(ReservationCell.reservation_id == reservation_id))
        await wallet.refund(db, reservation.member_id, quote.points, quote.peak_cells, reservation_id=reservation_id)

        return Cancellation(reservation=await get_reservation(db, reservation_id), refund=quote)

    try:
        cancellation = await run_in_transaction(db, attempt, "cancel")
    except BookingError as exc:
        logger.info("Cancellation of reservation #%s rejected: %s", reservation_id, exc.rule)
        raise

    logger.info(
        "Reservation #%s cancelled %.1fh before start, refunded %s pts (%d%%) and %s peak cells",
        reservation_id,
        cancellation.refund.hours_until_start,
        cancellation.refund.points,
        cancellation.refund.fraction * 100,
        cancellation.refund.peak_cells,
    )
    return cancellation
