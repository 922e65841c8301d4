"""Celery worker and beat schedule.

Runs the reset scheduler once a day shortly after midnight studio time. The
task is idempotent, so a missed or repeated beat only delays or no-ops a reset.

Start with:
    celery -A studiobook.worker worker --beat --loglevel=info
"""

import asyncio
import logging

from celery import Celery
from celery.schedules import crontab

from studiobook.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "studiobook",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.studio_timezone,
    enable_utc=True,
    beat_schedule={
        "studio-resets": {
            "task": "studiobook.run_resets",
            "schedule": crontab(hour=0, minute=5),
        },
    },
)


async def _run_resets() -> dict:
    # Imported here so the worker process builds its own engine and event loop
    from studiobook.core.database import async_session_factory, engine
    from studiobook.services.resets import run_due_resets

    try:
        async with async_session_factory() as db:
            summary = await run_due_resets(db)
    finally:
        await engine.dispose()
    return {
        "month": summary.month.isoformat(),
        "week": summary.week.isoformat(),
        "monthly_reset": summary.monthly_reset,
        "weekly_reset": summary.weekly_reset,
    }


@celery_app.task(name="studiobook.run_resets")
def run_resets() -> dict:
    """Apply any monthly/weekly resets that are due."""
    result = asyncio.run(_run_resets())
    logger.info("Reset run finished: %s", result)
    return result
