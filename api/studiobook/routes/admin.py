"""Admin routes: member wallets, caps, manual resets and the studio calendar.

Every endpoint requires the X-Admin-Key header.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.database import get_db
from studiobook.core.dependencies import require_admin
from studiobook.schemas import (
    BulkUpdateOut,
    CapUpdate,
    MemberCreate,
    PointsTransactionOut,
    ReservationOut,
    ResetOut,
    WalletOut,
)
from studiobook.services import booking, resets, wallet
from studiobook.services.pricing import to_local

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/members", response_model=WalletOut, status_code=status.HTTP_201_CREATED)
async def create_member(body: MemberCreate, db: AsyncSession = Depends(get_db)):
    """Open a wallet for a newly approved member."""
    return await wallet.open_wallet(
        db,
        body.name,
        body.email,
        today=to_local(datetime.now(UTC)).date(),
        monthly_points_max=body.monthly_points_max,
        weekend_slots_max=body.weekend_slots_max,
    )


@router.put("/members/cap", response_model=BulkUpdateOut)
async def set_cap_for_all(body: CapUpdate, db: AsyncSession = Depends(get_db)):
    return BulkUpdateOut(members_updated=await wallet.set_cap_all(db, body.new_max))


@router.put("/members/peak-cap", response_model=BulkUpdateOut)
async def set_peak_cap_for_all(body: CapUpdate, db: AsyncSession = Depends(get_db)):
    return BulkUpdateOut(members_updated=await wallet.set_peak_cap_all(db, body.new_max))


@router.put("/members/{member_id}/cap", response_model=WalletOut)
async def set_member_cap(member_id: int, body: CapUpdate, db: AsyncSession = Depends(get_db)):
    return await wallet.set_cap(db, member_id, body.new_max)


@router.put("/members/{member_id}/peak-cap", response_model=WalletOut)
async def set_member_peak_cap(member_id: int, body: CapUpdate, db: AsyncSession = Depends(get_db)):
    return await wallet.set_peak_cap(db, member_id, body.new_max)


@router.get("/members/{member_id}/transactions", response_model=list[PointsTransactionOut])
async def list_member_transactions(member_id: int, db: AsyncSession = Depends(get_db)):
    """Most recent wallet movements for a member."""
    return await wallet.list_transactions(db, member_id)


@router.get("/bookings", response_model=list[ReservationOut])
async def list_bookings(
    start: datetime = Query(..., description="Window start (ISO 8601 instant)"),
    end: datetime = Query(..., description="Window end (ISO 8601 instant)"),
    db: AsyncSession = Depends(get_db),
):
    """Confirmed reservations intersecting [start, end)."""
    return await booking.list_reservations(db, start, end)


@router.post("/resets/monthly", response_model=ResetOut)
async def reset_monthly(db: AsyncSession = Depends(get_db)):
    return ResetOut(members_reset=await resets.trigger_monthly_reset(db))


@router.post("/resets/weekly", response_model=ResetOut)
async def reset_weekly(db: AsyncSession = Depends(get_db)):
    return ResetOut(members_reset=await resets.trigger_weekly_reset(db))
