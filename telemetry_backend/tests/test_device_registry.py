"""
Device Registry cache contract tests.
"""

import json
import pytest
from sqlalchemy import update

from telemetry_backend.app.core.exceptions import NotRegisteredError
from telemetry_backend.app.models.registered_device import RegisteredDevice
from telemetry_backend.app.services.device_registry import DeviceRegistry, is_registered_material


@pytest.mark.asyncio
async def test_lookup_caches_hits_with_ttl(registry, redis, registered_devices):
    assignment = await registry.lookup("TABLET-A2")

    assert assignment.material_id == "MAT-1"
    assert assignment.slot_number == 2
    key = DeviceRegistry.cache_key("TABLET-A2")
    assert key == "device_registry:TABLET-A2"
    assert json.loads(redis.store[key])["material_id"] == "MAT-1"
    assert redis.expiries[key] == 300


@pytest.mark.asyncio
async def test_cached_mapping_is_served_until_it_expires(registry, redis, db_session, registered_devices):
    await registry.lookup("TABLET-A1")

    await db_session.execute(
        update(RegisteredDevice).where(RegisteredDevice.device_id == "TABLET-A1").values(material_id="MAT-7")
    )
    await db_session.commit()

    assert (await registry.lookup("TABLET-A1")).material_id == "MAT-1"

    # TTL elapsed
    await redis.delete(DeviceRegistry.cache_key("TABLET-A1"))
    assert (await registry.lookup("TABLET-A1")).material_id == "MAT-7"


@pytest.mark.asyncio
async def test_misses_are_not_cached(registry, redis, db_session):
    assert await registry.lookup("TABLET-NEW") is None
    assert redis.store == {}

    db_session.add(RegisteredDevice(device_id="TABLET-NEW", material_id="MAT-9", slot_number=1))
    await db_session.commit()

    assert (await registry.lookup("TABLET-NEW")).material_id == "MAT-9"


@pytest.mark.asyncio
async def test_inactive_devices_are_not_resolved(registry, db_session):
    db_session.add(RegisteredDevice(device_id="TABLET-OLD", material_id="MAT-3", slot_number=1, is_active=False))
    await db_session.commit()

    with pytest.raises(NotRegisteredError):
        await registry.resolve("TABLET-OLD")


@pytest.mark.asyncio
async def test_redis_failure_falls_back_to_database(db_session, failing_redis, registered_devices):
    registry = DeviceRegistry(db_session, failing_redis)

    assignment = await registry.resolve("TABLET-B1")

    assert assignment.material_id == "MAT-2"
    assert failing_redis.store == {}


@pytest.mark.asyncio
async def test_malformed_cache_entry_is_ignored(registry, redis, registered_devices):
    redis.store[DeviceRegistry.cache_key("TABLET-A1")] = "not json"

    assert (await registry.lookup("TABLET-A1")).material_id == "MAT-1"


@pytest.mark.asyncio
async def test_registered_material_check(db_session, registered_devices):
    assert await is_registered_material(db_session, "MAT-1") is True
    assert await is_registered_material(db_session, "OLD-KEY") is False

    await db_session.execute(
        update(RegisteredDevice).where(RegisteredDevice.material_id == "MAT-2").values(is_active=False)
    )
    await db_session.commit()

    assert await is_registered_material(db_session, "MAT-2") is False
