import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure project root is importable in local and CI runs.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Force test config before importing app modules.
TEST_DB_PATH = Path(tempfile.gettempdir()) / "trading_journal_test.db"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()

os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["RISK_DAY_TIMEZONE"] = "UTC"
os.environ["FREE_TRADE_LIMIT"] = "50"
os.environ["FREE_PLAN_MAX_DAYS"] = "50"

from apps.api.app.main import app  # noqa: E402,F401
from apps.api.app.db.session import Base, SessionLocal, engine  # noqa: E402


T0 = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock():
    return FrozenClock(T0)


@pytest.fixture()
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
