"""
Device Registry read-through repository.

Resolves a tablet's deviceId to its vehicle group and slot. The mapping
changes rarely but is read on every telemetry call, so hits are cached
in Redis.

Cache contract:
- Hits are cached for `device_registry_cache_ttl_seconds`; a mapping may
  be stale for at most that long after re-registration.
- Misses and deactivated devices are never cached, so a newly registered
  tablet is visible immediately.
- Redis failures fall back to the database.
"""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_backend.app.core.config import settings
from telemetry_backend.app.core.exceptions import NotRegisteredError
from telemetry_backend.app.models.registered_device import RegisteredDevice

logger = logging.getLogger("telemetry.registry")

CACHE_KEY_PREFIX = "device_registry:"


@dataclass(frozen=True)
class DeviceAssignment:
    device_id: str
    material_id: str
    car_group_id: Optional[str]
    slot_number: int


async def is_registered_material(db: AsyncSession, material_id: str) -> bool:
    """True when at least one active tablet is registered to `material_id`."""
    result = await db.execute(
        select(RegisteredDevice.id).where(
            RegisteredDevice.material_id == material_id,
            RegisteredDevice.is_active == True
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


class DeviceRegistry:

    def __init__(self, db: AsyncSession, redis=None, ttl_seconds: int = None):
        self.db = db
        self.redis = redis
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.device_registry_cache_ttl_seconds

    @staticmethod
    def cache_key(device_id: str) -> str:
        return f"{CACHE_KEY_PREFIX}{device_id}"

    async def lookup(self, device_id: str) -> Optional[DeviceAssignment]:
        """Return the assignment for `device_id`, or None if unregistered."""
        cached = await self._cache_get(device_id)
        if cached is not None:
            return cached

        result = await self.db.execute(
            select(RegisteredDevice).where(
                RegisteredDevice.device_id == device_id,
                RegisteredDevice.is_active == True
            )
        )
        device = result.scalar_one_or_none()
        if device is None:
            return None

        assignment = DeviceAssignment(
            device_id=device.device_id,
            material_id=device.material_id,
            car_group_id=device.car_group_id,
            slot_number=device.slot_number,
        )
        await self._cache_set(assignment)
        return assignment

    async def resolve(self, device_id: str) -> DeviceAssignment:
        """Like lookup(), but fails closed with NotRegisteredError."""
        assignment = await self.lookup(device_id)
        if assignment is None:
            raise NotRegisteredError(device_id)
        return assignment

    async def _cache_get(self, device_id: str) -> Optional[DeviceAssignment]:
        if self.redis is None:
            return None
        try:
            raw = await self.redis.get(self.cache_key(device_id))
        except Exception as exc:
            logger.warning("Registry cache read failed for %s, using database: %s", device_id, exc)
            return None
        if not raw:
            return None
        try:
            return DeviceAssignment(**json.loads(raw))
        except (TypeError, ValueError):
            logger.warning("Discarding malformed registry cache entry for %s", device_id)
            return None

    async def _cache_set(self, assignment: DeviceAssignment) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.set(
                self.cache_key(assignment.device_id),
                json.dumps(asdict(assignment)),
                ex=self.ttl_seconds,
            )
        except Exception as exc:
            logger.warning("Registry cache write failed for %s: %s", assignment.device_id, exc)
