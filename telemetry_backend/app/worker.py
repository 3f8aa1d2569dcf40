"""
Celery application.

Beat fires the daily archival run at `archive_run_time` in the tracking
timezone. Run a worker with an embedded beat next to the API:

    celery -A telemetry_backend.app.worker worker --beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from telemetry_backend.app.core.config import settings

app = Celery(
    "telemetry_backend",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["telemetry_backend.app.tasks"],
)

app.conf.update(
    timezone=settings.tracking_timezone,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    beat_schedule={
        "daily-archival": {
            "task": "telemetry_backend.app.tasks.archive_closed_days",
            "schedule": crontab(
                hour=settings.archive_run_time.hour,
                minute=settings.archive_run_time.minute,
            ),
        },
    },
)
