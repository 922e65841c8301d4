"""Slot range validation.

Each check returns the error it would raise, or None if the rule passes, so
the checks can be tested one at a time. validate_slot_range() runs them in a
fixed order and raises the first failure.

Pure: the caller supplies the confirmed reservations to check against. Under
concurrency this is a fast-path check only; the reservation_cells uniqueness
constraint is what finally rejects a racing overlap.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from studiobook.core.config import settings
from studiobook.core.errors import (
    BookingError,
    InvalidRangeError,
    MisalignedSlotError,
    PastSlotError,
    SlotConflictError,
)
from studiobook.models.reservation import ReservationStatus
from studiobook.services.pricing import is_aligned, to_local


class Interval(Protocol):
    id: int
    start_time: datetime
    end_time: datetime
    status: ReservationStatus


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open intersection: [10:00, 10:30) and [10:30, 11:00) do not overlap."""
    return a_start < b_end and b_start < a_end


def check_range_order(start: datetime, end: datetime) -> BookingError | None:
    if not to_local(start) < to_local(end):
        return InvalidRangeError("The booking must end after it starts.")
    return None


def check_alignment(start: datetime, end: datetime) -> BookingError | None:
    if not (is_aligned(start) and is_aligned(end)):
        return MisalignedSlotError(
            f"Bookings must start and end on a {settings.slot_minutes}-minute boundary (e.g. 10:00 or 10:30)."
        )
    return None


def check_not_in_past(start: datetime, now: datetime) -> BookingError | None:
    if to_local(start) < to_local(now):
        return PastSlotError("Cannot book a slot in the past.")
    return None


def find_conflict(reservations: Iterable[Interval], start: datetime, end: datetime) -> Interval | None:
    """Earliest confirmed reservation intersecting [start, end), if any."""
    start, end = to_local(start), to_local(end)
    clashing = [
        r
        for r in reservations
        if r.status == ReservationStatus.CONFIRMED and overlaps(r.start_time, r.end_time, start, end)
    ]
    if not clashing:
        return None
    return min(clashing, key=lambda r: (r.start_time, r.id))


def check_conflict(reservations: Iterable[Interval], start: datetime, end: datetime) -> BookingError | None:
    conflict = find_conflict(reservations, start, end)
    if conflict is not None:
        return SlotConflictError(conflict)
    return None


def validate_slot_range(
    reservations: Iterable[Interval],
    start: datetime,
    end: datetime,
    now: datetime,
) -> None:
    """Raise the first rule violation for [start, end), in this order:
    range order, alignment, not in the past, no overlap with a confirmed reservation.
    """
    error = (
        check_range_order(start, end)
        or check_alignment(start, end)
        or check_not_in_past(start, now)
        or check_conflict(reservations, start, end)
    )
    if error:
        raise error
