"""
Service dependencies for FastAPI.

Wires request-scoped sessions, the Redis-backed device registry and the
injected clock into the telemetry services.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from telemetry_backend.app.core.clock import Clock, get_clock
from telemetry_backend.app.core.redis_client import get_redis
from telemetry_backend.app.db.session import get_db
from telemetry_backend.app.services.device_registry import DeviceRegistry
from telemetry_backend.app.services.route_service import RouteReconstructionService
from telemetry_backend.app.services.telemetry_ingestion import TelemetryIngestionService


async def get_device_registry(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis)
) -> DeviceRegistry:
    """
    FastAPI dependency for the read-through device registry.

    Args:
        db: Request-scoped database session
        redis: Redis client used as the registry cache

    Returns:
        DeviceRegistry bound to this request's session
    """
    return DeviceRegistry(db, redis)


async def get_ingestion_service(
    db: AsyncSession = Depends(get_db),
    registry: DeviceRegistry = Depends(get_device_registry),
    clock: Clock = Depends(get_clock)
) -> TelemetryIngestionService:
    return TelemetryIngestionService(db, registry, clock)


async def get_route_service(
    db: AsyncSession = Depends(get_db),
    registry: DeviceRegistry = Depends(get_device_registry),
    clock: Clock = Depends(get_clock)
) -> RouteReconstructionService:
    return RouteReconstructionService(db, registry, clock)
