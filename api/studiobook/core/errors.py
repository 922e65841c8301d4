"""Booking and wallet error taxonomy.

Every business rule failure is a BookingError subclass with a stable ``rule``
code and a specific human-readable message, so callers can tell a full wallet
apart from a scheduling conflict. Errors pass through the booking workflow
unchanged; only StoreContentionError is ever retried.
"""

from typing import TYPE_CHECKING

from studiobook.core.config import STUDIO_TZ

if TYPE_CHECKING:
    from studiobook.models.reservation import Reservation


class BookingError(Exception):
    """Base class for all engine errors."""

    rule = "booking_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidRangeError(BookingError):
    rule = "invalid_range"


class MisalignedSlotError(BookingError):
    rule = "misaligned_slot"


class PastSlotError(BookingError):
    rule = "past_slot"


class SlotConflictError(BookingError):
    """The proposed range intersects a confirmed reservation."""

    rule = "slot_conflict"

    def __init__(self, conflict: "Reservation | None" = None):
        self.conflict = conflict
        if conflict is None:
            message = "That time range was just booked by someone else."
        else:
            start = conflict.start_time.astimezone(STUDIO_TZ)
            end = conflict.end_time.astimezone(STUDIO_TZ)
            message = f"Studio already booked from {start:%a %d %b %H:%M} to {end:%H:%M} (reservation #{conflict.id})."
        super().__init__(message)


class InsufficientPointsError(BookingError):
    rule = "insufficient_points"

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"This booking costs {required} points but you only have {available} left this month.")


class PeakQuotaExceededError(BookingError):
    rule = "peak_quota_exceeded"

    def __init__(self, requested: int, remaining: int):
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"This booking uses {requested} weekend slot{'s' if requested != 1 else ''} "
            f"but only {remaining} remain this week."
        )


class NotFoundError(BookingError):
    rule = "not_found"


class AlreadyCancelledError(BookingError):
    rule = "already_cancelled"


class InvalidCapError(BookingError):
    rule = "invalid_cap"


class StoreContentionError(BookingError):
    """Transient transaction failure that outlasted the retry budget."""

    rule = "store_contention"
