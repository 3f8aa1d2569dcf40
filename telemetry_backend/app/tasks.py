"""
Celery tasks.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from celery import shared_task
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from telemetry_backend.app.core.clock import utc_now
from telemetry_backend.app.core.config import settings
from telemetry_backend.app.models.tracking_enums import ArchiveTrigger
from telemetry_backend.app.services.archival import ArchivalService

logger = logging.getLogger("telemetry.tasks")


@asynccontextmanager
async def task_session_factory():
    """
    Session factory for one task invocation.

    Every task runs in a fresh event loop, so pooled connections from the
    API's engine cannot be reused here.
    """
    task_engine = create_async_engine(settings.database_url, echo=settings.db_echo, poolclass=NullPool)
    try:
        yield async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await task_engine.dispose()


async def run_scheduled_archival() -> dict:
    async with task_session_factory() as session_factory:
        service = ArchivalService(session_factory=session_factory, clock=utc_now)
        run = await service.run_once(trigger=ArchiveTrigger.SCHEDULED)
    return run.model_dump(mode="json", by_alias=True)


@shared_task
def archive_closed_days():
    """Archive every open record dated before today."""
    summary = asyncio.run(run_scheduled_archival())
    logger.info(
        "Scheduled archival finished: archived=%s skipped=%s failed=%s",
        summary["archived"], summary["skipped"], summary["failed"]
    )
    return summary
