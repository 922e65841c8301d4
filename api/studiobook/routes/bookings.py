"""Booking routes: book, list, quote, cancel, and the wallet snapshot.

All rules live in studiobook.services; errors raised there are turned into
responses by the handler registered in studiobook.main.
"""

from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.config import STUDIO_TZ
from studiobook.core.database import get_db
from studiobook.schemas import (
    AvailabilityOut,
    BookingCreate,
    CancellationOut,
    CellOut,
    CellPriceOut,
    QuoteOut,
    RefundQuoteOut,
    ReservationOut,
    WalletOut,
)
from studiobook.services import booking, wallet
from studiobook.services.operating_hours import generate_cells
from studiobook.services.pricing import price_range

router = APIRouter(tags=["bookings"])


@router.post(
    "/members/{member_id}/bookings",
    response_model=ReservationOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(member_id: int, body: BookingCreate, db: AsyncSession = Depends(get_db)):
    return await booking.book(db, member_id, body.start_time, body.end_time)


@router.get("/members/{member_id}/bookings", response_model=list[ReservationOut])
async def list_member_bookings(
    member_id: int,
    include_past: bool = Query(False, description="Include past and cancelled reservations"),
    db: AsyncSession = Depends(get_db),
):
    return await booking.list_member_reservations(db, member_id, upcoming_only=not include_past)


@router.get("/members/{member_id}/wallet", response_model=WalletOut)
async def get_wallet(member_id: int, db: AsyncSession = Depends(get_db)):
    return await wallet.get_wallet(db, member_id)


@router.post("/bookings/quote", response_model=QuoteOut)
async def quote_booking(body: BookingCreate):
    """Price a proposed range without booking it."""
    price = price_range(body.start_time, body.end_time, with_cells=True)
    return QuoteOut(
        start_time=body.start_time,
        end_time=body.end_time,
        total_cost=price.total_cost,
        peak_cells=price.peak_cells,
        cells=[
            CellPriceOut(start_time=start, tier=cell.tier, cost=cell.cost, is_peak=cell.is_peak)
            for start, cell in price.cells
        ],
    )


@router.get("/bookings/{reservation_id}/cancellation-quote", response_model=RefundQuoteOut)
async def quote_cancellation(reservation_id: int, db: AsyncSession = Depends(get_db)):
    quote = await booking.quote_cancellation(db, reservation_id)
    return RefundQuoteOut(
        reservation_id=reservation_id,
        hours_until_start=round(quote.hours_until_start, 2),
        refund_fraction=quote.fraction,
        refund_points=quote.points,
        refund_peak_cells=quote.peak_cells,
    )


@router.delete("/bookings/{reservation_id}", response_model=CancellationOut)
async def cancel_booking(reservation_id: int, db: AsyncSession = Depends(get_db)):
    result = await booking.cancel(db, reservation_id)
    return CancellationOut(
        reservation_id=reservation_id,
        hours_until_start=round(result.refund.hours_until_start, 2),
        refund_fraction=result.refund.fraction,
        refund_points=result.refund.points,
        refund_peak_cells=result.refund.peak_cells,
        reservation=ReservationOut.model_validate(result.reservation),
    )


@router.get("/availability", response_model=AvailabilityOut)
async def get_availability(
    query_date: date = Query(..., alias="date", description="Date in YYYY-MM-DD format"),
    db: AsyncSession = Depends(get_db),
):
    """Every half-hour cell of the studio day with its price tier and availability.

    Past cells are included with is_available=False so the frontend can render
    a complete day grid.
    """
    day_start = datetime.combine(query_date, time(0), tzinfo=STUDIO_TZ)
    day_end = datetime.combine(query_date + timedelta(days=1), time(0), tzinfo=STUDIO_TZ)
    reservations = await booking.list_reservations(db, day_start, day_end)
    cells = generate_cells(query_date, [(r.start_time, r.end_time) for r in reservations])
    return AvailabilityOut(date=query_date, cells=[CellOut(**c) for c in cells])
