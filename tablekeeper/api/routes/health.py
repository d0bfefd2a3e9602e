"""Health check endpoints."""

from datetime import datetime, timezone

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from tablekeeper.api.dependencies import get_automation, get_db, get_redis
from tablekeeper.services.automation import TableAutomation

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime


class ReadyCheck(BaseModel):
    """Individual readiness check."""

    status: str
    message: str | None = None


class ReadyResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict[str, ReadyCheck]


class StandingsMetrics(BaseModel):
    """Job counts reported by the standings health check."""

    pendingJobs: int
    processingJobs: int
    completedJobs: int
    failedJobs: int


class StandingsHealthResponse(BaseModel):
    """Standings calculation health."""

    status: str
    metrics: StandingsMetrics


@router.get("/health", response_model=HealthResponse)
async def health():
    """
    Basic health check.

    Returns healthy if the service is running.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/ready", response_model=ReadyResponse)
async def ready(
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
    automation: TableAutomation = Depends(get_automation),
):
    """
    Readiness check for all dependencies.

    Checks:
    - Database connectivity
    - Redis connectivity (table cache)
    - Calculation workers running
    """
    checks = {}
    all_ready = True

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["db"] = ReadyCheck(status="ok")
    except Exception as e:
        checks["db"] = ReadyCheck(status="error", message=str(e))
        all_ready = False

    # Redis only backs the cache, so failures are a warning
    try:
        await redis_client.ping()
        checks["redis"] = ReadyCheck(status="ok")
    except Exception as e:
        checks["redis"] = ReadyCheck(status="warning", message=str(e))

    if automation.pool.running:
        checks["workers"] = ReadyCheck(
            status="ok", message=f"{automation.pool.size} workers running"
        )
    else:
        checks["workers"] = ReadyCheck(status="warning", message="Workers not running")

    return ReadyResponse(ready=all_ready, checks=checks)


@router.get("/health/standings", response_model=StandingsHealthResponse)
async def standings_health(automation: TableAutomation = Depends(get_automation)):
    """
    Standings calculation health.

    - healthy: queue flowing, few failures
    - degraded: backlog or failure rate above the degraded threshold, or paused
    - unhealthy: backlog or failure rate above the unhealthy threshold
    """
    return automation.health.to_endpoint()


@router.get("/health/standings/details")
async def standings_health_details(automation: TableAutomation = Depends(get_automation)):
    """Full health report: job ages, recent failures, failure rate."""
    return automation.health.report().to_dict()
