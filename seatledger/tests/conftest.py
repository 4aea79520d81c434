from __future__ import annotations

import os
import tempfile

# Point settings at a throwaway SQLite file before any seatledger module builds the engine.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"seatledger-test-{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_PATH}"
os.environ["AUTH_CACHE_TTL_S"] = "0"
os.environ["AUDIT_WRITE_BACKOFF_MS"] = "0"
os.environ["ADMISSION_MODE"] = "soft"

import pytest  # noqa: E402

from seatledger.apps.api.deps import reset_auth_cache  # noqa: E402
from seatledger.core.config import get_settings  # noqa: E402
from seatledger.domain.models import Base  # noqa: E402
from seatledger.persistence.db import engine  # noqa: E402
from seatledger.services.capacity import reset_capacity_service  # noqa: E402
from seatledger.services.reconciliation import reset_reconciliation_service  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Rebuild the schema per test so seeded organizations never leak between tests.
    get_settings.cache_clear()
    reset_capacity_service()
    reset_reconciliation_service()
    reset_auth_cache()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


def pytest_sessionfinish(session, exitstatus) -> None:
    if os.path.exists(_TEST_DB_PATH):
        os.remove(_TEST_DB_PATH)
