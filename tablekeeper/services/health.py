"""Health reporting for the calculation subsystem.

Read-only view over a queue state copy. Classification:
- unhealthy: pending backlog or failure rate over the unhealthy threshold
- degraded: over the degraded threshold, or the queue is paused
- healthy: otherwise
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from tablekeeper.config.automation import HealthThresholds
from tablekeeper.services.queue.jobs import JobStatus
from tablekeeper.services.queue.manager import CalculationQueue, QueueState

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


@dataclass
class HealthReport:
    """Point-in-time health of the calculation subsystem."""

    status: str
    timestamp: datetime
    is_paused: bool
    counts: dict[str, int]
    failure_rate: float
    stuck_jobs: int
    retries_scheduled: int
    average_processing_seconds: float
    last_completed_at: datetime | None
    pending_jobs: list[dict[str, Any]] = field(default_factory=list)
    processing_jobs: list[dict[str, Any]] = field(default_factory=list)
    recent_failures: list[dict[str, Any]] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "isPaused": self.is_paused,
            "counts": self.counts,
            "failureRate": round(self.failure_rate, 4),
            "stuckJobs": self.stuck_jobs,
            "retriesScheduled": self.retries_scheduled,
            "averageProcessingSeconds": round(self.average_processing_seconds, 3),
            "lastCompletedAt": self.last_completed_at,
            "pendingJobs": self.pending_jobs,
            "processingJobs": self.processing_jobs,
            "recentFailures": self.recent_failures,
            "reasons": self.reasons,
        }


class HealthReporter:
    """Classify queue health from a consistent state snapshot."""

    def __init__(self, queue: CalculationQueue, thresholds: HealthThresholds | None = None):
        self.queue = queue
        self.thresholds = thresholds or HealthThresholds()

    def report(self) -> HealthReport:
        state = self.queue.state()
        return self.evaluate(state)

    def evaluate(self, state: QueueState) -> HealthReport:
        """Build a report from an existing state copy."""
        now = state.timestamp
        completed = state.count(JobStatus.COMPLETED)
        failed = state.count(JobStatus.FAILED)
        pending = state.count(JobStatus.PENDING)
        finished = completed + failed
        failure_rate = failed / finished if finished else 0.0

        pending_jobs = []
        processing_jobs = []
        stuck = 0
        for job in state.jobs:
            if job.status == JobStatus.PENDING:
                pending_jobs.append({
                    "id": job.id,
                    "leagueId": job.league_id,
                    "seasonId": job.season_id,
                    "priority": job.priority.value,
                    "attempts": job.attempts,
                    "ageSeconds": (now - job.created_at).total_seconds(),
                })
            elif job.status == JobStatus.PROCESSING:
                running = (now - job.started_at).total_seconds() if job.started_at else 0.0
                if running > state.stuck_timeout:
                    stuck += 1
                processing_jobs.append({
                    "id": job.id,
                    "leagueId": job.league_id,
                    "seasonId": job.season_id,
                    "runningSeconds": running,
                })

        status, reasons = self._classify(pending, failure_rate, state.is_paused)
        recent = state.recent_failures[-self.thresholds.recent_failures:]

        return HealthReport(
            status=status,
            timestamp=now,
            is_paused=state.is_paused,
            counts=dict(state.counts),
            failure_rate=failure_rate,
            stuck_jobs=stuck,
            retries_scheduled=state.retries_scheduled,
            average_processing_seconds=state.average_processing_seconds,
            last_completed_at=state.last_completed_at,
            pending_jobs=pending_jobs,
            processing_jobs=processing_jobs,
            recent_failures=list(reversed(recent)),
            reasons=reasons,
        )

    def _classify(self, pending: int, failure_rate: float, paused: bool) -> tuple[str, list[str]]:
        t = self.thresholds
        reasons = []
        status = HEALTHY

        if pending > t.pending_unhealthy:
            reasons.append(f"pending jobs {pending} > {t.pending_unhealthy}")
            status = UNHEALTHY
        elif pending > t.pending_degraded:
            reasons.append(f"pending jobs {pending} > {t.pending_degraded}")
            status = DEGRADED

        if failure_rate > t.failure_rate_unhealthy:
            reasons.append(f"failure rate {failure_rate:.0%} > {t.failure_rate_unhealthy:.0%}")
            status = UNHEALTHY
        elif failure_rate > t.failure_rate_degraded:
            reasons.append(f"failure rate {failure_rate:.0%} > {t.failure_rate_degraded:.0%}")
            if status == HEALTHY:
                status = DEGRADED

        if paused:
            reasons.append("queue paused")
            if status == HEALTHY:
                status = DEGRADED

        return status, reasons

    def to_endpoint(self, report: HealthReport | None = None) -> dict[str, Any]:
        """Compact shape served by the health endpoint."""
        report = report or self.report()
        return {
            "status": report.status,
            "metrics": {
                "pendingJobs": report.counts.get(JobStatus.PENDING.value, 0),
                "processingJobs": report.counts.get(JobStatus.PROCESSING.value, 0),
                "completedJobs": report.counts.get(JobStatus.COMPLETED.value, 0),
                "failedJobs": report.counts.get(JobStatus.FAILED.value, 0),
            },
        }
