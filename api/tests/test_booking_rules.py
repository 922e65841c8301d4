"""Tests for the slot range validator (pure, no database)."""

import random
from datetime import timedelta
from types import SimpleNamespace

import pytest
from conftest import NOW, at

from studiobook.core.errors import (
    InvalidRangeError,
    MisalignedSlotError,
    PastSlotError,
    SlotConflictError,
)
from studiobook.models.reservation import ReservationStatus
from studiobook.services.booking_rules import (
    check_alignment,
    check_conflict,
    check_not_in_past,
    check_range_order,
    find_conflict,
    overlaps,
    validate_slot_range,
)


def _reservation(id, start, end, status=ReservationStatus.CONFIRMED):
    return SimpleNamespace(id=id, start_time=start, end_time=end, status=status)


class TestOverlaps:
    def test_touching_intervals_do_not_overlap(self):
        assert not overlaps(at(16, 10), at(16, 10, 30), at(16, 10, 30), at(16, 11))
        assert not overlaps(at(16, 10, 30), at(16, 11), at(16, 10), at(16, 10, 30))

    def test_partial_overlap(self):
        assert overlaps(at(16, 10), at(16, 11), at(16, 10, 30), at(16, 11, 30))

    def test_containment(self):
        assert overlaps(at(16, 10), at(16, 12), at(16, 10, 30), at(16, 11))


class TestIndividualChecks:
    def test_range_order(self):
        assert check_range_order(at(16, 10), at(16, 11)) is None
        assert isinstance(check_range_order(at(16, 10), at(16, 10)), InvalidRangeError)
        assert isinstance(check_range_order(at(16, 11), at(16, 10)), InvalidRangeError)

    def test_alignment(self):
        assert check_alignment(at(16, 10), at(16, 10, 30)) is None
        assert isinstance(check_alignment(at(16, 10, 15), at(16, 10, 45)), MisalignedSlotError)
        assert isinstance(check_alignment(at(16, 10), at(16, 10, 45)), MisalignedSlotError)

    def test_not_in_past(self):
        assert check_not_in_past(at(16, 10), NOW) is None
        assert isinstance(check_not_in_past(at(16, 10), at(16, 10, 1)), PastSlotError)

    def test_starting_exactly_now_is_allowed(self):
        assert check_not_in_past(at(16, 10), at(16, 10)) is None

    def test_conflict_ignores_cancelled(self):
        existing = [_reservation(1, at(16, 10), at(16, 11), ReservationStatus.CANCELLED)]
        assert check_conflict(existing, at(16, 10), at(16, 11)) is None


class TestValidateSlotRange:
    def test_valid_range_passes(self):
        validate_slot_range([], at(16, 10), at(16, 11), NOW)

    def test_adjacent_bookings_pass(self):
        existing = [_reservation(1, at(16, 10), at(16, 10, 30))]
        validate_slot_range(existing, at(16, 10, 30), at(16, 11), NOW)
        validate_slot_range(existing, at(16, 9, 30), at(16, 10), NOW)

    def test_overlap_names_the_conflicting_reservation(self):
        existing = [_reservation(7, at(16, 10), at(16, 10, 30))]
        with pytest.raises(SlotConflictError) as exc_info:
            validate_slot_range(existing, at(16, 10), at(16, 11), NOW)
        assert exc_info.value.conflict.id == 7
        assert "reservation #7" in exc_info.value.message

    def test_conflict_is_earliest_overlap(self):
        existing = [
            _reservation(3, at(16, 11), at(16, 12)),
            _reservation(2, at(16, 9), at(16, 10, 30)),
            _reservation(1, at(16, 14), at(16, 15)),
        ]
        assert find_conflict(existing, at(16, 10), at(16, 14, 30)).id == 2

    def test_inverted_range_reported_before_misalignment(self):
        with pytest.raises(InvalidRangeError):
            validate_slot_range([], at(16, 11, 15), at(16, 10, 10), NOW)

    def test_misalignment_reported_before_past(self):
        with pytest.raises(MisalignedSlotError):
            validate_slot_range([], at(1, 9, 15), at(1, 10), NOW)

    def test_past_reported_before_conflict(self):
        existing = [_reservation(1, at(1, 9), at(1, 10))]
        with pytest.raises(PastSlotError):
            validate_slot_range(existing, at(1, 9), at(1, 10), NOW)

    @pytest.mark.parametrize("seed", range(5))
    def test_accepted_ranges_never_overlap(self, seed):
        """Feed random ranges through the validator; whatever it accepts is pairwise disjoint."""
        rng = random.Random(seed)
        day_start = at(16, 0)
        accepted = []
        for i in range(200):
            start = day_start + timedelta(minutes=30 * rng.randrange(0, 96))
            end = start + timedelta(minutes=30 * rng.randrange(1, 9))
            try:
                validate_slot_range(accepted, start, end, NOW)
            except SlotConflictError:
                continue
            accepted.append(_reservation(i, start, end))

        assert accepted
        for i, a in enumerate(accepted):
            for b in accepted[i + 1 :]:
                assert not overlaps(a.start_time, a.end_time, b.start_time, b.end_time)
