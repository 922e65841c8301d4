"""Reset scheduler: monthly points and weekly peak quota.

run_due_resets() is safe to call as often as you like. Each member carries
the start date of the month/week it was last reset for, and only members whose
marker is older than the current period are touched, so a second run in the
same period is a no-op. The Celery beat task in studiobook.worker calls it daily.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from studiobook.core.database import run_in_transaction
from studiobook.services import wallet
from studiobook.services.pricing import to_local

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResetSummary:
    month: date
    week: date
    monthly_reset: int
    weekly_reset: int


def current_periods(now: datetime) -> tuple[date, date]:
    """(first of the month, Monday of the week) for ``now`` in studio-local time."""
    today = to_local(now).date()
    return wallet.month_start(today), wallet.week_start(today)


async def run_due_resets(db: AsyncSession, now: datetime | None = None) -> ResetSummary:
    month, week = current_periods(now or datetime.now(UTC))

    async def attempt() -> ResetSummary:
        monthly = await wallet.reset_monthly_all(db, month, only_due=True)
        weekly = await wallet.reset_weekly_all(db, week, only_due=True)
        return ResetSummary(month=month, week=week, monthly_reset=monthly, weekly_reset=weekly)

    summary = await run_in_transaction(db, attempt, "scheduled resets")
    if summary.monthly_reset or summary.weekly_reset:
        logger.info(
            "Scheduled resets applied: %s monthly (period %s), %s weekly (period %s)",
            summary.monthly_reset,
            month,
            summary.weekly_reset,
            week,
        )
    else:
        logger.debug("Scheduled resets: nothing due for %s / %s", month, week)
    return summary


async def trigger_monthly_reset(db: AsyncSession, now: datetime | None = None) -> int:
    """Admin trigger: restore every active member's points now, regardless of markers."""
    month, _ = current_periods(now or datetime.now(UTC))
    count = await run_in_transaction(db, lambda: wallet.reset_monthly_all(db, month), "manual monthly reset")
    logger.info("Manual monthly reset applied to %s members", count)
    return count


async def trigger_weekly_reset(db: AsyncSession, now: datetime | None = None) -> int:
    """Admin trigger: zero every active member's peak usage now, regardless of markers."""
    _, week = current_periods(now or datetime.now(UTC))
    count = await run_in_transaction(db, lambda: wallet.reset_weekly_all(db, week), "manual weekly reset")
    logger.info("Manual weekly reset applied to %s members", count)
    return count
