"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from trip_telemetry.app.main import app
from trip_telemetry.app.core.config import Settings
from trip_telemetry.app.db.session import Base
from trip_telemetry.app.services.breadcrumb_store import BreadcrumbStore
from trip_telemetry.app.services.sample_store import SqlSampleStore
from trip_telemetry.app.services.telemetry_service import build_runtime
from trip_telemetry.tests.fakes import InMemoryStore

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(db_session_factory):
    async with db_session_factory() as session:
        yield session


@pytest.fixture
def sample_store(db_session_factory):
    return SqlSampleStore(db_session_factory)


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def breadcrumbs(memory_store):
    return BreadcrumbStore(memory_store, accuracy_ceiling_meters=100.0)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False
        self.unreachable = False

    def _check(self):
        if self.unreachable:
            raise RedisConnectionError("Connection refused")

    async def ping(self):
        self._check()
        return not self._closed

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        self._check()
        return 1 if self.store.pop(key, None) is not None else 0

    async def flushdb(self):
        self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture
def redis_mock():
    return MockRedis()


@pytest.fixture
def test_settings():
    return Settings(
        database_url=TEST_DATABASE_URL,
        sampling_interval_seconds=0.02,
        delivery_timeout_seconds=1.0,
        delivery_retry_delay_seconds=0.01,
        delivery_flush_timeout_seconds=2.0,
        routing_base_url=None,
    )


@pytest.fixture
async def runtime(db_session_factory, redis_mock, test_settings):
    """Telemetry runtime on the test database; the watchdog is driven by hand."""
    telemetry = build_runtime(db_session_factory, redis_mock, config=test_settings)
    yield telemetry
    await telemetry.stop()


@pytest.fixture
async def client(runtime):
    """Async client for testing."""
    app.state.telemetry = runtime
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
