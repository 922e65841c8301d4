"""Shared test fixtures.

Tests run against a throwaway SQLite file (aiosqlite) unless
SB_TEST_DATABASE_URL points somewhere else. The settings module reads the
environment at import time, so this must happen before studiobook is imported.
"""

import os
import tempfile
from datetime import datetime
from pathlib import Path

_DB_DIR = Path(tempfile.mkdtemp(prefix="studiobook-tests-"))
os.environ["SB_DATABASE_URL"] = os.environ.get("SB_TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR / 'test.db'}")
os.environ["SB_ADMIN_API_KEY"] = "test-admin-key"
os.environ["SB_STUDIO_TIMEZONE"] = "Europe/London"

import pytest  # noqa: E402

from studiobook.core.config import STUDIO_TZ  # noqa: E402
from studiobook.core.database import async_session_factory, engine  # noqa: E402
from studiobook.models import Base  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


def at(day: int, hour: int, minute: int = 0, month: int = 3, year: int = 2026) -> datetime:
    """Studio-local instant. March 2026: Mon 16, Fri 20, Sat 21, Sun 22 (all GMT)."""
    return datetime(year, month, day, hour, minute, tzinfo=STUDIO_TZ)


# A fixed "now" well before the March test week
NOW = at(1, 12)


@pytest.fixture(autouse=True)
async def _fresh_schema():
    """Dispose stale pool connections and rebuild the schema before each test.

    The global engine is created at import time. When pytest-asyncio creates a new
    event loop for tests, any existing pooled connections are bound to the old loop
    and will fail with 'Future attached to a different loop'.
    """
    await engine.dispose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session
