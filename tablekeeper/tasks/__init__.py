"""Celery tasks for TableKeeper.

This module configures Celery and registers the periodic maintenance tasks.
Table recalculation itself runs on the API process's worker pool.
"""

from celery import Celery
from celery.schedules import crontab

from tablekeeper.config import get_settings

settings = get_settings()

# Create Celery application
celery_app = Celery(
    "tablekeeper",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "tablekeeper.tasks.maintenance",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task behavior
    task_track_started=True,
    task_time_limit=600,  # 10 minute hard limit
    task_soft_time_limit=540,  # 9 minute soft limit
    # Result expiration
    result_expires=3600,  # 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=1,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Snapshot retention - daily at 03:15
    "prune-snapshots": {
        "task": "tablekeeper.tasks.maintenance.prune_snapshots",
        "schedule": crontab(hour=3, minute=15),
        "options": {"expires": 3600},
    },
}
