"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime, timedelta, timezone
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from telemetry_backend.app.main import app
from telemetry_backend.app.db.session import get_db, Base
from telemetry_backend.app.core.clock import get_clock
from telemetry_backend.app.core.redis_client import get_redis
import telemetry_backend.app.core.redis_client as redis_client_module
from telemetry_backend.app.models.registered_device import RegisteredDevice
from telemetry_backend.app.services.archival import ArchivalService, get_archival_service
from telemetry_backend.app.services.device_registry import DeviceRegistry

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 10:00 in Manila, 2024-03-15
FROZEN_NOW = datetime(2024, 3, 15, 2, 0, tzinfo=timezone.utc)


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class FrozenClock:
    """Clock double; moves only when told to."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.expiries = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        self.expiries[key] = ex
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}
            self.expiries = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FailingRedis(MockRedis):
    """Redis that is unreachable."""

    async def get(self, key):
        raise ConnectionError("redis unavailable")

    async def set(self, key, value, ex=None):
        raise ConnectionError("redis unavailable")

    async def delete(self, key):
        raise ConnectionError("redis unavailable")


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def redis():
    return MockRedis()


@pytest.fixture
def failing_redis():
    return FailingRedis()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def archiver(session_factory, clock):
    return ArchivalService(session_factory=session_factory, clock=clock)


@pytest.fixture
async def client(session_factory, redis, clock, archiver):
    """Async client against the app, pointed at the per-test database, cache, clock and archival service."""

    # Patch the global redis client used by the health check
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis():
        return redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_archival_service] = lambda: archiver

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def registry(db_session, redis):
    return DeviceRegistry(db_session, redis)


@pytest.fixture
async def registered_devices(db_session):
    """Two vehicles: MAT-1 with both slots filled, MAT-2 with one tablet."""
    devices = [
        RegisteredDevice(device_id="TABLET-A1", material_id="MAT-1", car_group_id="CG-1", slot_number=1),
        RegisteredDevice(device_id="TABLET-A2", material_id="MAT-1", car_group_id="CG-1", slot_number=2),
        RegisteredDevice(device_id="TABLET-B1", material_id="MAT-2", car_group_id="CG-2", slot_number=1),
    ]
    db_session.add_all(devices)
    await db_session.commit()
    return devices


@pytest.fixture
def location_payload():
    """Builder for location-update bodies; MAT-1 slot 1 near Manila by default."""

    def build(device_id="TABLET-A1", material_id="MAT-1", slot=1, **overrides):
        payload = {
            "deviceId": device_id,
            "materialId": material_id,
            "deviceSlot": slot,
            "lat": 14.5995,
            "lng": 120.9842,
            "speed": 20.0,
            "heading": 90.0,
            "accuracy": 10.0,
        }
        payload.update(overrides)
        return payload

    return build
