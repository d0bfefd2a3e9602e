"""Operator API for table automation.

Queue inspection and control, manual recalculation, snapshots and rollback.
These endpoints should be protected in production (not implemented here).
Errors raised by the services are rendered by the application's
TableKeeperError handler.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from tablekeeper.api.dependencies import get_automation
from tablekeeper.services.automation import TableAutomation
from tablekeeper.services.queue import JobStatus, Priority

router = APIRouter(prefix="/api/admin/tables", tags=["admin"])
logger = structlog.get_logger(__name__)


class RecalculateRequest(BaseModel):
    """Manual recalculation request."""

    model_config = ConfigDict(populate_by_name=True)

    league_id: int = Field(alias="leagueId")
    season_id: int = Field(alias="seasonId")
    priority: Priority = Priority.HIGH
    description: str | None = None


class SnapshotRequest(BaseModel):
    """Manual snapshot request."""

    model_config = ConfigDict(populate_by_name=True)

    league_id: int = Field(alias="leagueId")
    season_id: int = Field(alias="seasonId")
    description: str | None = None
    created_by: str | None = Field(default=None, alias="createdBy")


class PauseRequest(BaseModel):
    """Pause options."""

    model_config = ConfigDict(populate_by_name=True)

    cancel_pending: bool = Field(default=False, alias="cancelPending")


class RestoreRequest(BaseModel):
    """Restore options."""

    backup: bool = False


@router.post("/recalculate")
async def recalculate(
    request: RecalculateRequest,
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    """Queue a recalculation of one league table (defaults to high priority)."""
    job_id = automation.request_recalculation(
        request.league_id,
        request.season_id,
        priority=request.priority,
        trigger="MANUAL",
        description=request.description or "Manual recalculation",
    )
    logger.info(
        "manual_recalculation_requested",
        job_id=job_id,
        league_id=request.league_id,
        season_id=request.season_id,
    )
    return {"success": True, "jobId": job_id}


@router.get("/queue")
async def get_queue(
    status: JobStatus | None = Query(None, description="Only list jobs in this status"),
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    """Queue counts and the retained jobs."""
    state = automation.queue.state()
    jobs = [j for j in state.jobs if status is None or j.status == status]
    return {
        "queueLength": state.count(JobStatus.PENDING),
        "activeJobs": state.count(JobStatus.PROCESSING),
        "completedJobs": state.count(JobStatus.COMPLETED),
        "failedJobs": state.count(JobStatus.FAILED),
        "cancelledJobs": state.count(JobStatus.CANCELLED),
        "isPaused": state.is_paused,
        "jobs": [j.to_dict(now=state.timestamp) for j in jobs],
    }


@router.post("/queue/clear")
async def clear_queue(automation: TableAutomation = Depends(get_automation)) -> dict[str, Any]:
    """Cancel every pending job."""
    cancelled = automation.queue.clear()
    return {"success": True, "cancelledJobs": cancelled}


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    """Job details including its error history."""
    job = automation.queue.get(job_id)
    data = job.to_dict(now=automation.queue.state().timestamp)
    data["errorHistory"] = [
        {
            "attempt": e.attempt,
            "error": e.message,
            "errorType": e.error_type,
            "retryable": e.retryable,
            "timestamp": e.timestamp,
        }
        for e in job.error_history
    ]
    return data


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    """Cancel a pending job."""
    job = automation.queue.cancel(job_id)
    return {"success": True, "job": job.to_dict()}


@router.post("/jobs/{job_id}/retry")
async def retry_job(
    job_id: str,
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    """Re-queue a failed job with a fresh attempt budget."""
    new_job_id = automation.queue.retry_failed(job_id)
    return {"success": True, "jobId": new_job_id}


@router.post("/pause")
async def pause_queue(
    request: PauseRequest | None = None,
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    """Stop handing out jobs. Running calculations finish normally."""
    cancel_pending = request.cancel_pending if request else False
    cancelled = automation.queue.pause(cancel_pending=cancel_pending)
    return {"success": True, "isPaused": True, "cancelledJobs": cancelled}


@router.post("/resume")
async def resume_queue(automation: TableAutomation = Depends(get_automation)) -> dict[str, Any]:
    automation.queue.resume()
    return {"success": True, "isPaused": False}


@router.get("/snapshots")
async def list_snapshots(
    league_id: int | None = Query(None, alias="leagueId"),
    season_id: int | None = Query(None, alias="seasonId"),
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    """Snapshots newest first, without their entries."""
    snapshots = await automation.snapshots.list_snapshots(league_id, season_id)
    return {"snapshots": [s.to_dict() for s in snapshots]}


@router.post("/snapshots")
async def create_snapshot(
    request: SnapshotRequest,
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    """Snapshot the currently published table."""
    snapshot_id = await automation.snapshots.snapshot(
        request.league_id,
        request.season_id,
        description=request.description,
        created_by=request.created_by or "operator",
    )
    return {"success": True, "snapshotId": snapshot_id}


@router.get("/snapshots/{snapshot_id}")
async def get_snapshot(
    snapshot_id: str,
    include_entries: bool = Query(True, alias="includeEntries"),
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    snapshot = await automation.snapshots.get_snapshot(snapshot_id)
    return snapshot.to_dict(include_entries=include_entries)


@router.post("/snapshots/{snapshot_id}/restore")
async def restore_snapshot(
    snapshot_id: str,
    request: RestoreRequest | None = None,
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    """
    Replace the published table with a snapshot.

    With ``backup`` set, the current table is snapshotted first.
    """
    backup = request.backup if request else False
    restored = await automation.snapshots.rollback(snapshot_id, backup=backup)
    logger.info("snapshot_restore_requested", snapshot_id=snapshot_id, backup=backup)
    return {"success": True, "restoredEntries": restored}


@router.get("/history/{league_id}")
async def get_history(
    league_id: int,
    limit: int = Query(50, ge=1, le=500),
    automation: TableAutomation = Depends(get_automation),
) -> dict[str, Any]:
    """Completed and failed calculations for a league, newest first."""
    jobs = automation.queue.history(league_id=league_id, limit=limit)
    return {"leagueId": league_id, "jobs": [j.to_dict() for j in jobs]}
