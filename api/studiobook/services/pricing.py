"""Pricing rule engine.

Maps every half-hour cell to a point cost tier and decides whether it counts
against the weekly peak ("weekend slot") quota. This is the single definition
of the tiering policy; nothing else in the codebase decides what "peak" means.

Pure calculation module: no database, no async, no FastAPI dependencies.
A cell is classified by its own start instant in studio-local time, so a
booking that crosses midnight (or Friday 17:00) is priced cell by cell.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from studiobook.core.config import STUDIO_TZ, settings
from studiobook.core.errors import InvalidRangeError

# Tier names
TIER_WEEKDAY = "weekday"
TIER_EVENING = "evening"
TIER_WEEKEND = "weekend"

EVENING_START_HOUR = 17
EVENING_END_HOUR = 21
FRIDAY = 4

TIER_COSTS = {
    TIER_WEEKDAY: 1,
    TIER_EVENING: 2,
    TIER_WEEKEND: 3,
}


@dataclass(frozen=True)
class CellPrice:
    cost: int
    is_peak: bool
    tier: str


@dataclass(frozen=True)
class RangePrice:
    total_cost: int
    peak_cells: int
    cells: tuple[tuple[datetime, CellPrice], ...] = ()


def cell_delta() -> timedelta:
    return timedelta(minutes=settings.slot_minutes)


def to_local(instant: datetime) -> datetime:
    """Studio wall-clock time for an instant. Naive values are taken as already local."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=STUDIO_TZ)
    return instant.astimezone(STUDIO_TZ)


def is_aligned(instant: datetime) -> bool:
    local = to_local(instant)
    return local.second == 0 and local.microsecond == 0 and local.minute % settings.slot_minutes == 0


def pricing_tier(instant: datetime) -> str:
    """Weekend: Fri 17:00 onward and all of Sat-Sun. Evening: Mon-Thu 17:00-21:00. Otherwise weekday."""
    local = to_local(instant)
    day, hour = local.weekday(), local.hour

    if day > FRIDAY or (day == FRIDAY and hour >= EVENING_START_HOUR):
        return TIER_WEEKEND
    if day < FRIDAY and EVENING_START_HOUR <= hour < EVENING_END_HOUR:
        return TIER_EVENING
    return TIER_WEEKDAY


def price_cell(instant: datetime) -> CellPrice:
    tier = pricing_tier(instant)
    return CellPrice(cost=TIER_COSTS[tier], is_peak=tier == TIER_WEEKEND, tier=tier)


def iter_cells(start: datetime, end: datetime):
    """Yield the start instant of each consecutive cell in [start, end)."""
    # Step in UTC so DST changes never skip or repeat a cell
    current = to_local(start).astimezone(UTC)
    stop = to_local(end).astimezone(UTC)
    step = cell_delta()
    while current < stop:
        yield current.astimezone(STUDIO_TZ)
        current += step


def price_range(start: datetime, end: datetime, *, with_cells: bool = False) -> RangePrice:
    """Sum price_cell over every cell in [start, end).

    Raises InvalidRangeError for an empty/inverted or misaligned range.
    """
    if not to_local(start) < to_local(end):
        raise InvalidRangeError("The booking must end after it starts.")
    if not (is_aligned(start) and is_aligned(end)):
        raise InvalidRangeError(f"Bookings must start and end on {settings.slot_minutes}-minute boundaries.")

    total_cost = 0
    peak_cells = 0
    cells: list[tuple[datetime, CellPrice]] = []
    for cell_start in iter_cells(start, end):
        price = price_cell(cell_start)
        total_cost += price.cost
        peak_cells += int(price.is_peak)
        if with_cells:
            cells.append((cell_start, price))

    return RangePrice(total_cost=total_cost, peak_cells=peak_cells, cells=tuple(cells))
