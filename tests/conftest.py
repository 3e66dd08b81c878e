# tests/conftest.py
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import app.models  # noqa: F401  (register tables)
from app.core.config import Settings
from app.database import Base
from app.services.handlers import FeedPushHandler, HandlerRegistry
from app.services.job_events import JobEventRecorder
from app.services.job_executor import JobExecutor
from app.services.job_queue import JobQueue
from tests.mocks.mock_platform import InMemoryPlatformClient, StaticCredentialProvider


class FakeClock:
    """Manually advanced UTC clock"""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        JOB_MAX_RETRIES=5,
        JOB_BATCH_SIZE=10,
        JOB_MAX_CONCURRENCY=4,
        JOB_POLL_INTERVAL_SECONDS=0.05,
        JOB_TIMEOUT_SECONDS=5.0,
        JOB_FETCH_ATTEMPTS=3,
        JOB_COOLDOWN_SECONDS=60.0,
        JOB_RATE_LIMIT_MAX_ATTEMPTS=4,
        GOOGLE_MERCHANT_ID="1234567",
    )


@pytest.fixture
async def test_engine(tmp_path):
    """File-backed SQLite so every session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for assertions"""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events():
    return JobEventRecorder()


@pytest.fixture
def job_queue(session_factory, events, settings, clock):
    return JobQueue(session_factory, events=events, settings=settings, clock=clock)


@pytest.fixture
def feed_client():
    return InMemoryPlatformClient(key_field="sku")


@pytest.fixture
def credentials():
    return StaticCredentialProvider()


@pytest.fixture
def sleeps():
    """Records executor back-off sleeps instead of waiting"""
    return []


@pytest.fixture
def registry(feed_client):
    return HandlerRegistry([FeedPushHandler(feed_client)])


@pytest.fixture
def executor(job_queue, registry, credentials, settings, clock, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return JobExecutor(job_queue, registry, credentials, settings=settings, sleep=fake_sleep, clock=clock)


@pytest.fixture
def sample_feed_items():
    """Provide sample feed items for tests"""
    return [
        {
            "sku": "A-100",
            "title": "Fender Stratocaster",
            "description": "Sunburst, maple neck",
            "price": "1299.00",
            "currency": "USD",
            "availability": "in stock",
            "link": "https://shop.example.com/a-100",
            "brand": "Fender",
        },
        {
            "sku": "B-200",
            "title": "Gibson Les Paul",
            "description": "Heritage cherry",
            "price": "2499.00",
            "currency": "USD",
            "availability": "in stock",
            "link": "https://shop.example.com/b-200",
            "brand": "Gibson",
        },
    ]
