"""Async database engine and session management.

The store is the only owner of shared mutable state (the studio calendar and
member wallets). Nothing here caches rows across requests.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from studiobook.core.config import settings
from studiobook.core.errors import StoreContentionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # SQLite serialises writers itself; wait on the file lock instead of failing fast.
        return {"connect_args": {"timeout": 15}}
    return {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **_engine_options(settings.database_url),
)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session. Used as a FastAPI dependency."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ---------------------------------------------------------------------------
# Transactions with bounded retry on contention
# ---------------------------------------------------------------------------

# serialization_failure, deadlock_detected, lock_not_available
CONTENTION_SQLSTATES = {"40001", "40P01", "55P03"}


def is_contention(exc: DBAPIError) -> bool:
    """True for transient lock/serialization failures that are safe to retry."""
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in CONTENTION_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


async def run_in_transaction(session: AsyncSession, operation: Callable[[], Awaitable[T]], action: str) -> T:
    """Run ``operation`` and commit, retrying the whole unit on store contention.

    Any other error rolls back and propagates unchanged. When the retry
    budget is spent the last contention error surfaces as StoreContentionError.
    """
    attempts = settings.store_retry_attempts
    for attempt in range(1, attempts + 1):
        try:
            result = await operation()
            await session.commit()
            return result
        except DBAPIError as exc:
            await session.rollback()
            if not is_contention(exc):
                raise
            if attempt == attempts:
                logger.warning("%s gave up after %s attempts: %s", action, attempts, exc.orig)
                raise StoreContentionError(
                    "The studio calendar is busy right now. Please try again in a moment."
                ) from exc
            delay = settings.store_retry_backoff_seconds * 2 ** (attempt - 1)
            logger.warning("%s hit store contention (attempt %s/%s), retrying in %.2fs", action, attempt, attempts, delay)
            await asyncio.sleep(delay)
        except Exception:
            await session.rollback()
            raise
    raise AssertionError("unreachable")
