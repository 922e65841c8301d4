"""Wallet ledger: monthly points and the weekly peak quota.

Balances live on the members row; the points_transactions table is the audit
trail. All mutations go through this module. Nothing here commits: the caller
owns the transaction, so a charge and the reservation it pays for commit or
roll back together.

charge() and refund() are single conditional UPDATE statements, so the
sufficiency check and the decrement are one atomic read-modify-write and two
concurrent charges can never both pass against a stale balance. Admin and
reset operations are rare and take a row lock (SELECT ... FOR UPDATE) instead.
"""

import logging
from datetime import date, timedelta

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.config import settings
from studiobook.core.errors import (
    InsufficientPointsError,
    InvalidCapError,
    NotFoundError,
    PeakQuotaExceededError,
)
from studiobook.models.member import Member
from studiobook.models.points import PointsTransaction, TransactionType

logger = logging.getLogger(__name__)


def month_start(day: date) -> date:
    return day.replace(day=1)


def week_start(day: date) -> date:
    """Monday of the week containing day."""
    return day - timedelta(days=day.weekday())


async def get_wallet(db: AsyncSession, member_id: int) -> Member:
    """Fresh snapshot of a member's wallet. Raises NotFoundError."""
    result = await db.execute(
        select(Member).where(Member.id == member_id).execution_options(populate_existing=True)
    )
    member = result.scalar_one_or_none()
    if member is None:
        raise NotFoundError(f"Member #{member_id} not found.")
    return member


async def open_wallet(
    db: AsyncSession,
    name: str,
    email: str | None,
    *,
    today: date,
    monthly_points_max: int | None = None,
    weekend_slots_max: int | None = None,
) -> Member:
    """Create a member with a full balance (called when an application is approved).

    Reset markers are set to the current periods so the scheduler does not
    reset a brand new wallet again later this month or week.
    """
    points_max = monthly_points_max or settings.default_monthly_points_max
    slots_max = weekend_slots_max or settings.default_weekend_slots_max
    if points_max <= 0 or slots_max <= 0:
        raise InvalidCapError("Caps must be positive.")

    member = Member(
        name=name,
        email=email,
        monthly_points=points_max,
        monthly_points_max=points_max,
        weekend_slots_used=0,
        weekend_slots_max=slots_max,
        monthly_reset_on=month_start(today),
        weekly_reset_on=week_start(today),
    )
    db.add(member)
    await db.flush()
    logger.info("Opened wallet for member #%s (%s pts, %s weekend slots)", member.id, points_max, slots_max)
    return member


async def _record(
    db: AsyncSession,
    member_id: int,
    txn_type: TransactionType,
    points_delta: int,
    weekend_slots_delta: int,
    points_after: int,
    weekend_slots_used_after: int,
    description: str,
    reservation_id: int | None = None,
) -> PointsTransaction:
    txn = PointsTransaction(
        member_id=member_id,
        transaction_type=txn_type,
        points_delta=points_delta,
        weekend_slots_delta=weekend_slots_delta,
        points_after=points_after,
        weekend_slots_used_after=weekend_slots_used_after,
        reservation_id=reservation_id,
        description=description,
    )
    db.add(txn)
    await db.flush()
    return txn


async def charge(
    db: AsyncSession,
    member_id: int,
    points: int,
    peak_cells: int,
    reservation_id: int | None = None,
) -> PointsTransaction:
    """Debit points and consume peak quota, or raise without touching the wallet."""
    result = await db.execute(
        update(Member)
        .where(
            Member.id == member_id,
            Member.is_active.is_(True),
            Member.monthly_points >= points,
            Member.weekend_slots_used + peak_cells <= Member.weekend_slots_max,
        )
        .values(
            monthly_points=Member.monthly_points - points,
            weekend_slots_used=Member.weekend_slots_used + peak_cells,
        )
        .returning(Member.monthly_points, Member.weekend_slots_used)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()

    if row is None:
        # Nothing matched: work out which condition failed
        member = await get_wallet(db, member_id)
        if not member.is_active:
            raise NotFoundError(f"Member #{member_id} is not active.")
        if member.monthly_points < points:
            raise InsufficientPointsError(points, member.monthly_points)
        raise PeakQuotaExceededError(peak_cells, member.weekend_slots_remaining)

    points_after, used_after = row
    return await _record(
        db,
        member_id,
        TransactionType.CHARGE,
        points_delta=-points,
        weekend_slots_delta=peak_cells,
        points_after=points_after,
        weekend_slots_used_after=used_after,
        description="Booking charge" if reservation_id is None else f"Charge for reservation #{reservation_id}",
        reservation_id=reservation_id,
    )


async def refund(
    db: AsyncSession,
    member_id: int,
    points: int,
    peak_cells: int,
    reservation_id: int | None = None,
) -> PointsTransaction:
    """Credit points back (capped at the monthly max) and release peak quota (floored at 0).

    Never fails on balance grounds: clamping is the edge policy.
    """
    result = await db.execute(
        update(Member)
        .where(Member.id == member_id)
        .values(
            monthly_points=case(
                (Member.monthly_points + points > Member.monthly_points_max, Member.monthly_points_max),
                else_=Member.monthly_points + points,
            ),
            weekend_slots_used=case(
                (Member.weekend_slots_used - peak_cells < 0, 0),
                else_=Member.weekend_slots_used - peak_cells,
            ),
        )
        .returning(Member.monthly_points, Member.weekend_slots_used)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundError(f"Member #{member_id} not found.")

    points_after, used_after = row
    return await _record(
        db,
        member_id,
        TransactionType.REFUND,
        points_delta=points,
        weekend_slots_delta=-peak_cells,
        points_after=points_after,
        weekend_slots_used_after=used_after,
        description="Refund" if reservation_id is None else f"Cancellation refund for reservation #{reservation_id}",
        reservation_id=reservation_id,
    )


# ---------------------------------------------------------------------------
# Resets
# ---------------------------------------------------------------------------


async def _lock_members(db: AsyncSession, *criteria) -> list[Member]:
    result = await db.execute(
        select(Member)
        .where(*criteria)
        .order_by(Member.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def reset_monthly_all(db: AsyncSession, period: date, *, only_due: bool = False) -> int:
    """Restore every active member's points to their cap. Returns the number of wallets reset.

    With only_due=True, members already reset for ``period`` are skipped, which
    makes the scheduled run idempotent.
    """
    criteria = [Member.is_active.is_(True)]
    if only_due:
        criteria.append((Member.monthly_reset_on.is_(None)) | (Member.monthly_reset_on < period))

    members = await _lock_members(db, *criteria)
    for member in members:
        await _reset_monthly(db, member, period)
    return len(members)


async def reset_weekly_all(db: AsyncSession, period: date, *, only_due: bool = False) -> int:
    """Zero every active member's peak-quota usage. See reset_monthly_all."""
    criteria = [Member.is_active.is_(True)]
    if only_due:
        criteria.append((Member.weekly_reset_on.is_(None)) | (Member.weekly_reset_on < period))

    members = await _lock_members(db, *criteria)
    for member in members:
        await _reset_weekly(db, member, period)
    return len(members)


async def reset_monthly(db: AsyncSession, member_id: int, period: date) -> Member:
    members = await _lock_members(db, Member.id == member_id)
    if not members:
        raise NotFoundError(f"Member #{member_id} not found.")
    await _reset_monthly(db, members[0], period)
    return members[0]


async def reset_weekly(db: AsyncSession, member_id: int, period: date) -> Member:
    members = await _lock_members(db, Member.id == member_id)
    if not members:
        raise NotFoundError(f"Member #{member_id} not found.")
    await _reset_weekly(db, members[0], period)
    return members[0]


async def _reset_monthly(db: AsyncSession, member: Member, period: date) -> None:
    delta = member.monthly_points_max - member.monthly_points
    member.monthly_points = member.monthly_points_max
    member.monthly_reset_on = period
    await _record(
        db,
        member.id,
        TransactionType.MONTHLY_RESET,
        points_delta=delta,
        weekend_slots_delta=0,
        points_after=member.monthly_points,
        weekend_slots_used_after=member.weekend_slots_used,
        description=f"Monthly reset for {period:%B %Y}",
    )


async def _reset_weekly(db: AsyncSession, member: Member, period: date) -> None:
    delta = -member.weekend_slots_used
    member.weekend_slots_used = 0
    member.weekly_reset_on = period
    await _record(
        db,
        member.id,
        TransactionType.WEEKLY_RESET,
        points_delta=0,
        weekend_slots_delta=delta,
        points_after=member.monthly_points,
        weekend_slots_used_after=0,
        description=f"Weekly reset for week of {period:%d %B %Y}",
    )


# ---------------------------------------------------------------------------
# Admin cap overrides
# ---------------------------------------------------------------------------


async def set_cap(db: AsyncSession, member_id: int, new_max: int) -> Member:
    """Change a member's monthly cap. The balance is not rescaled, only clamped down to the new cap."""
    members = await _lock_members(db, Member.id == member_id)
    if not members:
        raise NotFoundError(f"Member #{member_id} not found.")
    await _apply_cap(db, members[0], new_max)
    return members[0]


async def set_peak_cap(db: AsyncSession, member_id: int, new_max: int) -> Member:
    """Change a member's weekly peak cap. Usage above the new cap is clamped to it."""
    members = await _lock_members(db, Member.id == member_id)
    if not members:
        raise NotFoundError(f"Member #{member_id} not found.")
    await _apply_peak_cap(db, members[0], new_max)
    return members[0]


async def set_cap_all(db: AsyncSession, new_max: int) -> int:
    if new_max <= 0:
        raise InvalidCapError("The monthly points cap must be positive.")
    members = await _lock_members(db, Member.is_active.is_(True))
    for member in members:
        await _apply_cap(db, member, new_max)
    logger.info("Monthly cap set to %s for %s members", new_max, len(members))
    return len(members)


async def set_peak_cap_all(db: AsyncSession, new_max: int) -> int:
    if new_max <= 0:
        raise InvalidCapError("The weekend slot cap must be positive.")
    members = await _lock_members(db, Member.is_active.is_(True))
    for member in members:
        await _apply_peak_cap(db, member, new_max)
    logger.info("Weekend slot cap set to %s for %s members", new_max, len(members))
    return len(members)


async def _apply_cap(db: AsyncSession, member: Member, new_max: int) -> None:
    if new_max <= 0:
        raise InvalidCapError("The monthly points cap must be positive.")
    old_max, old_points = member.monthly_points_max, member.monthly_points
    member.monthly_points_max = new_max
    member.monthly_points = min(old_points, new_max)
    await _record(
        db,
        member.id,
        TransactionType.CAP_CHANGE,
        points_delta=member.monthly_points - old_points,
        weekend_slots_delta=0,
        points_after=member.monthly_points,
        weekend_slots_used_after=member.weekend_slots_used,
        description=f"Monthly cap changed from {old_max} to {new_max}",
    )


async def _apply_peak_cap(db: AsyncSession, member: Member, new_max: int) -> None:
    if new_max <= 0:
        raise InvalidCapError("The weekend slot cap must be positive.")
    old_max, old_used = member.weekend_slots_max, member.weekend_slots_used
    member.weekend_slots_max = new_max
    member.weekend_slots_used = min(old_used, new_max)
    await _record(
        db,
        member.id,
        TransactionType.CAP_CHANGE,
        points_delta=0,
        weekend_slots_delta=member.weekend_slots_used - old_used,
        points_after=member.monthly_points,
        weekend_slots_used_after=member.weekend_slots_used,
        description=f"Weekend slot cap changed from {old_max} to {new_max}",
    )


async def list_transactions(db: AsyncSession, member_id: int, limit: int = 50) -> list[PointsTransaction]:
    await get_wallet(db, member_id)
    result = await db.execute(
        select(PointsTransaction)
        .where(PointsTransaction.member_id == member_id)
        .order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
