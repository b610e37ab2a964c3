import os

# Settings require database credentials at import time
os.environ.setdefault("POSTGRES_USER", "test")
os.environ.setdefault("POSTGRES_PASSWORD", "test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from app.db.base import Base
from app.db.session import build_engine, build_session_factory
import app.models  # noqa: F401  (registers tables on Base.metadata)

BASE_TIME = 1_700_000_000_000
WINDOW_MS = 3 * 60 * 60 * 1000


class FakeClock:
    """Manually advanced epoch-ms clock."""

    def __init__(self, start: int = BASE_TIME):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine(tmp_path):
    # File-backed so concurrent sessions get their own connections
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'match_engine.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_session():
    session = AsyncMock()

    # Setup execute result
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = None
    mock_result.scalars.return_value.all.return_value = []
    mock_result.scalars.return_value.first.return_value = None
    mock_result.rowcount = 0

    session.execute.side_effect = None
    session.execute.return_value = mock_result

    # Standard methods
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)

    return session


@pytest.fixture
def mock_scheduler(monkeypatch):
    """Mock the global scheduler object in app.core.scheduler"""
    scheduler_mock = MagicMock()
    scheduler_mock.running = False
    scheduler_mock.add_job = MagicMock()
    monkeypatch.setattr("app.core.scheduler.scheduler", scheduler_mock)
    return scheduler_mock
