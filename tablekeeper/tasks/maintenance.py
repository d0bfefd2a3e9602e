"""Snapshot retention task.

Deletes snapshots past the retention age while keeping the newest few of
every league table.
"""

from datetime import datetime, timezone

import structlog

from tablekeeper.config import get_settings
from tablekeeper.models.base import get_session_factory, get_task_session
from tablekeeper.models.domain import JobRun
from tablekeeper.services.snapshots import SnapshotManager
from tablekeeper.services.stores import SqlSnapshotRepository, SqlTableStore
from tablekeeper.tasks import celery_app

logger = structlog.get_logger(__name__)


@celery_app.task(bind=True, soft_time_limit=540, time_limit=600)
def prune_snapshots(self, max_age_days: int | None = None, keep_per_table: int | None = None):
    """
    Scheduled: Daily at 03:15
    Timeout: 10 minutes

    1. Group snapshots by league and season
    2. Keep the newest ``keep_per_table`` of each group
    3. Delete the rest if older than ``max_age_days``
    """
    import asyncio

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(
            _prune_snapshots_async(self, max_age_days, keep_per_table)
        )
    finally:
        loop.close()


async def _prune_snapshots_async(
    task,
    max_age_days: int | None = None,
    keep_per_table: int | None = None,
):
    """Async implementation of snapshot pruning."""
    settings = get_settings()
    if max_age_days is None:
        max_age_days = settings.snapshot_max_age_days
    if keep_per_table is None:
        keep_per_table = settings.snapshot_keep_per_table

    started_at = datetime.now(timezone.utc)
    job_status = "running"
    error_message = None
    deleted = 0
    metadata = {"max_age_days": max_age_days, "keep_per_table": keep_per_table}

    async with get_task_session() as session:
        job_run = JobRun(
            job_name="prune_snapshots",
            started_at=started_at,
            status="running",
            job_metadata=metadata,
        )
        session.add(job_run)
        await session.commit()

        try:
            session_factory = get_session_factory(session.bind)
            manager = SnapshotManager(
                SqlSnapshotRepository(session_factory),
                SqlTableStore(session_factory),
            )
            deleted = await manager.prune(max_age_days, keep_per_table=keep_per_table)

            job_status = "success"
            logger.info(
                "prune_snapshots_task_complete",
                deleted=deleted,
                duration_seconds=(datetime.now(timezone.utc) - started_at).total_seconds(),
            )

        except Exception as e:
            job_status = "failed"
            error_message = str(e)
            logger.error(
                "prune_snapshots_task_failed",
                error=str(e),
                task_id=task.request.id,
            )

        finally:
            job_run.completed_at = datetime.now(timezone.utc)
            job_run.status = job_status
            job_run.error_message = error_message
            job_run.records_processed = deleted
            job_run.job_metadata = {**metadata, "deleted": deleted}
            await session.commit()

    return {"deleted": deleted, "status": job_status}
