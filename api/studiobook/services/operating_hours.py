"""Studio opening hours and the daily booking grid.

Pure calculation module: no database, no async, no FastAPI dependencies.
Opening hours only shape the grid shown to members; the booking rules do not
enforce them.
"""

from datetime import UTC, date, datetime, time, timedelta

from studiobook.core.config import STUDIO_TZ, settings
from studiobook.services.booking_rules import overlaps
from studiobook.services.pricing import iter_cells, price_cell


def opening_window(query_date: date) -> tuple[datetime, datetime]:
    """Studio-local open and close instants for a date."""
    open_at = datetime.combine(query_date, time(settings.open_hour), tzinfo=STUDIO_TZ)
    close_at = datetime.combine(query_date, time(settings.close_hour), tzinfo=STUDIO_TZ)
    return open_at, close_at


def generate_cells(
    query_date: date,
    booked_intervals: list[tuple[datetime, datetime]],
    now: datetime | None = None,
) -> list[dict]:
    """All half-hour cells for the studio on a date, with their price tier.

    Returns dicts with keys: start_time, end_time, tier, cost, is_peak, is_available.
    Past cells and cells overlapping confirmed reservations are unavailable
    (same half-open overlap rule as booking_rules.check_conflict).
    """
    now = now or datetime.now(UTC)
    open_at, close_at = opening_window(query_date)
    step = timedelta(minutes=settings.slot_minutes)

    cells: list[dict] = []
    for cell_start in iter_cells(open_at, close_at):
        cell_end = (cell_start.astimezone(UTC) + step).astimezone(STUDIO_TZ)
        price = price_cell(cell_start)
        is_past = cell_start < now
        is_held = any(overlaps(b_start, b_end, cell_start, cell_end) for b_start, b_end in booked_intervals)
        cells.append(
            {
                "start_time": cell_start,
                "end_time": cell_end,
                "tier": price.tier,
                "cost": price.cost,
                "is_peak": price.is_peak,
                "is_available": not is_past and not is_held,
            }
        )
    return cells
