"""Calculation job queue.

Single owner of all job state. Every public method takes the queue lock
exactly once, so a job can never be claimed by two workers and at most one
job per (league, season) is active at any time.

Lifecycle:
    pending -> processing -> completed | failed
    pending -> cancelled
    processing -> pending        (retryable failure, after backoff)
    failed -> pending            (operator retry)
"""

import copy
import itertools
import threading
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from tablekeeper.errors import (
    InvalidJobTransition,
    JobNotFound,
    QueueOverload,
    TransientError,
    is_retryable,
)
from tablekeeper.services.queue.jobs import (
    CalculationJob,
    JobError,
    JobStatus,
    Priority,
    max_priority,
)
from tablekeeper.services.queue.retry import RetryPolicy

logger = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:16]}"


@dataclass
class QueueState:
    """Point-in-time copy of the queue, safe to read without the lock."""

    timestamp: datetime
    is_paused: bool
    jobs: list[CalculationJob]
    recent_failures: list[dict[str, Any]]
    retries_scheduled: int
    stuck_timeout: float
    counts: dict[str, int] = field(default_factory=dict)

    def count(self, status: JobStatus) -> int:
        return self.counts.get(status.value, 0)

    @property
    def average_processing_seconds(self) -> float:
        durations = [
            d for j in self.jobs
            if j.status == JobStatus.COMPLETED and (d := j.duration_seconds()) is not None
        ]
        return sum(durations) / len(durations) if durations else 0.0

    @property
    def last_completed_at(self) -> datetime | None:
        finished = [j.completed_at for j in self.jobs if j.completed_at]
        return max(finished) if finished else None


class CalculationQueue:
    """
    Priority queue of table calculation jobs with per-key deduplication.

    Jobs are ordered by priority, then by submission order. Retryable
    failures come back after an exponential backoff; jobs left in
    ``processing`` longer than ``stuck_timeout`` are reaped and retried.
    """

    def __init__(
        self,
        max_size: int = 100,
        retry_policy: RetryPolicy | None = None,
        stuck_timeout: float = 30.0,
        max_completed_jobs: int = 100,
        max_failed_jobs: int = 50,
        recent_failure_limit: int = 50,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        """
        Initialize the queue.

        Args:
            max_size: Maximum number of active (pending + processing) jobs
            retry_policy: Backoff policy for failed jobs
            stuck_timeout: Seconds a job may stay in processing
            max_completed_jobs: Completed/cancelled jobs kept for history
            max_failed_jobs: Failed jobs kept for history
            recent_failure_limit: Failures kept for health reporting
            clock: Source of the current time (UTC)
            id_factory: Job id generator
        """
        self.max_size = max_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.stuck_timeout = stuck_timeout
        self.max_completed_jobs = max_completed_jobs
        self.max_failed_jobs = max_failed_jobs
        self._clock = clock or utc_now
        self._id_factory = id_factory or generate_job_id

        self._lock = threading.Lock()
        self._jobs: dict[str, CalculationJob] = {}
        self._active: dict[tuple[int, int], str] = {}
        self._paused = False
        self._sequence = itertools.count(1)
        self._claims = itertools.count(1)
        self._failures: deque[dict[str, Any]] = deque(maxlen=recent_failure_limit)
        self._retries_scheduled = 0

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def enqueue(
        self,
        league_id: int,
        season_id: int,
        priority: Priority | str = Priority.NORMAL,
        trigger: str = "UNKNOWN",
        description: str | None = None,
    ) -> str:
        """
        Request a calculation for a league and season.

        A pending job for the same key has its priority raised; a processing
        job is flagged so a fresh calculation follows it. Both return the
        existing job id.

        Raises:
            QueueOverload: if a new job would exceed ``max_size``
        """
        priority = Priority.parse(priority)
        key = (league_id, season_id)

        with self._lock:
            existing = self._active_job(key)
            if existing is not None:
                return self._merge(existing, priority, trigger)

            if len(self._active) >= self.max_size:
                logger.warning(
                    "calculation_queue_overload",
                    league_id=league_id,
                    season_id=season_id,
                    active_jobs=len(self._active),
                    max_size=self.max_size,
                )
                raise QueueOverload(
                    "Calculation queue is full, try again later",
                    details={"max_size": self.max_size},
                )

            job = self._create(league_id, season_id, priority, trigger, description)

        logger.info(
            "calculation_job_enqueued",
            job_id=job.id,
            league_id=league_id,
            season_id=season_id,
            priority=priority.value,
            trigger=trigger,
        )
        return job.id

    def _active_job(self, key: tuple[int, int]) -> CalculationJob | None:
        job_id = self._active.get(key)
        if job_id is None:
            return None
        job = self._jobs.get(job_id)
        if job is None or not job.status.is_active:
            # Stale lock entry
            del self._active[key]
            return None
        return job

    def _merge(self, job: CalculationJob, priority: Priority, trigger: str) -> str:
        if job.status == JobStatus.PENDING:
            job.priority = max_priority(job.priority, priority)
        else:
            job.needs_rerun = True
            job.rerun_priority = max_priority(job.rerun_priority or priority, priority)
        logger.info(
            "calculation_job_merged",
            job_id=job.id,
            status=job.status.value,
            priority=job.priority.value,
            needs_rerun=job.needs_rerun,
            trigger=trigger,
        )
        return job.id

    def _create(
        self,
        league_id: int,
        season_id: int,
        priority: Priority,
        trigger: str,
        description: str | None,
    ) -> CalculationJob:
        job = CalculationJob(
            id=self._id_factory(),
            league_id=league_id,
            season_id=season_id,
            priority=priority,
            created_at=self._clock(),
            sequence=next(self._sequence),
            trigger=trigger,
            description=description,
        )
        self._jobs[job.id] = job
        self._active[job.key] = job.id
        return job

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def dequeue(self) -> CalculationJob | None:
        """
        Claim the next eligible job.

        Returns a copy of the claimed job (status ``processing``) carrying
        the claim token the worker must hand back, or None when paused or
        nothing is eligible.
        """
        with self._lock:
            if self._paused:
                return None

            now = self._clock()
            candidates = [
                job for job in self._jobs.values()
                if job.status == JobStatus.PENDING
                and (job.next_attempt_at is None or job.next_attempt_at <= now)
            ]
            if not candidates:
                return None

            job = min(candidates, key=lambda j: (-j.priority.rank, j.sequence))
            job.status = JobStatus.PROCESSING
            job.started_at = now
            job.completed_at = None
            job.next_attempt_at = None
            job.claim_token = next(self._claims)
            claimed = copy.deepcopy(job)

        logger.info(
            "calculation_job_claimed",
            job_id=claimed.id,
            league_id=claimed.league_id,
            season_id=claimed.season_id,
            attempt=claimed.attempts + 1,
        )
        return claimed

    def _claimed(self, job_id: str, claim_token: int | None, action: str) -> CalculationJob | None:
        job = self._require(job_id)
        stale = job.status != JobStatus.PROCESSING or (
            claim_token is not None and claim_token != job.claim_token
        )
        if not stale:
            return job
        if claim_token is None:
            raise InvalidJobTransition(
                f"Cannot {action} job in status {job.status.value}",
                details={"job_id": job_id, "status": job.status.value},
            )
        logger.warning(
            "stale_claim_ignored",
            job_id=job_id,
            action=action,
            claim_token=claim_token,
            current_token=job.claim_token,
            status=job.status.value,
        )
        return None

    def complete(
        self,
        job_id: str,
        claim_token: int | None = None,
        result: dict[str, Any] | None = None,
    ) -> bool:
        """
        Mark a processing job completed.

        Returns False when the claim is stale (the job was reaped and
        possibly re-claimed since).
        """
        with self._lock:
            job = self._claimed(job_id, claim_token, "complete")
            if job is None:
                return False
            job.status = JobStatus.COMPLETED
            job.completed_at = self._clock()
            job.error = None
            job.result = result
            self._release(job)
            follow_up = self._schedule_follow_up(job)

        logger.info(
            "calculation_job_completed",
            job_id=job_id,
            league_id=job.league_id,
            season_id=job.season_id,
            duration_seconds=job.duration_seconds(),
            follow_up_job_id=follow_up,
        )
        return True

    def fail(
        self,
        job_id: str,
        error: BaseException | str,
        claim_token: int | None = None,
        retryable: bool | None = None,
    ) -> bool:
        """
        Record a failed attempt.

        Retryable errors send the job back to pending after a backoff while
        attempts remain; anything else marks it failed.

        Returns False when the claim is stale.
        """
        with self._lock:
            job = self._claimed(job_id, claim_token, "fail")
            if job is None:
                return False
            self._fail_locked(job, error, retryable)
        return True

    def _fail_locked(
        self,
        job: CalculationJob,
        error: BaseException | str,
        retryable: bool | None = None,
    ) -> None:
        now = self._clock()
        if retryable is None:
            retryable = is_retryable(error) if isinstance(error, BaseException) else True
        message = str(error) or type(error).__name__
        error_type = type(error).__name__ if isinstance(error, BaseException) else "Error"

        job.attempts += 1
        job.error = message
        job.error_history.append(
            JobError(
                message=message,
                error_type=error_type,
                timestamp=now,
                attempt=job.attempts,
                retryable=retryable,
            )
        )

        will_retry = retryable and self.retry_policy.should_retry(job.attempts)
        self._failures.append({
            "jobId": job.id,
            "leagueId": job.league_id,
            "seasonId": job.season_id,
            "error": message,
            "errorType": error_type,
            "attempt": job.attempts,
            "willRetry": will_retry,
            "timestamp": now,
        })

        if will_retry:
            delay = self.retry_policy.delay(job.attempts)
            job.status = JobStatus.PENDING
            job.started_at = None
            job.next_attempt_at = now + timedelta(seconds=delay)
            # The retry reads fresh match data, which covers a pending rerun
            if job.needs_rerun:
                job.priority = max_priority(job.priority, job.rerun_priority or job.priority)
                job.needs_rerun = False
                job.rerun_priority = None
            self._retries_scheduled += 1
            logger.warning(
                "calculation_job_retry_scheduled",
                job_id=job.id,
                attempt=job.attempts,
                max_attempts=self.retry_policy.max_attempts,
                delay_seconds=round(delay, 3),
                error=message,
            )
            return

        job.status = JobStatus.FAILED
        job.completed_at = now
        self._release(job)
        follow_up = self._schedule_follow_up(job)
        logger.error(
            "calculation_job_failed",
            job_id=job.id,
            league_id=job.league_id,
            season_id=job.season_id,
            attempts=job.attempts,
            error=message,
            error_type=error_type,
            retryable=retryable,
            follow_up_job_id=follow_up,
        )

    def _release(self, job: CalculationJob) -> None:
        if self._active.get(job.key) == job.id:
            del self._active[job.key]

    def _schedule_follow_up(self, job: CalculationJob) -> str | None:
        """Create the rerun requested while the job was processing."""
        if not job.needs_rerun:
            return None
        follow_up = self._create(
            job.league_id,
            job.season_id,
            job.rerun_priority or job.priority,
            trigger="RERUN",
            description=f"Rerun requested while {job.id} was processing",
        )
        job.needs_rerun = False
        job.follow_up_job_id = follow_up.id
        return follow_up.id

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def cancel(self, job_id: str) -> CalculationJob:
        """Cancel a pending job. Processing and finished jobs cannot be cancelled."""
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.PENDING:
                raise InvalidJobTransition(
                    f"Only pending jobs can be cancelled, job is {job.status.value}",
                    details={"job_id": job_id, "status": job.status.value},
                )
            self._cancel_locked(job)
            cancelled = copy.deepcopy(job)

        logger.info("calculation_job_cancelled", job_id=job_id)
        return cancelled

    def _cancel_locked(self, job: CalculationJob) -> None:
        job.status = JobStatus.CANCELLED
        job.completed_at = self._clock()
        job.next_attempt_at = None
        self._release(job)

    def retry_failed(self, job_id: str) -> str:
        """
        Re-queue a failed job with a fresh attempt budget.

        If another job for the same key is already active the request is
        merged into it and that job's id is returned.
        """
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.FAILED:
                raise InvalidJobTransition(
                    f"Only failed jobs can be retried, job is {job.status.value}",
                    details={"job_id": job_id, "status": job.status.value},
                )
            existing = self._active_job(job.key)
            if existing is not None:
                return self._merge(existing, job.priority, "MANUAL_RETRY")
            if len(self._active) >= self.max_size:
                raise QueueOverload(
                    "Calculation queue is full, try again later",
                    details={"max_size": self.max_size},
                )

            job.status = JobStatus.PENDING
            job.attempts = 0
            job.error = None
            job.error_history = []
            job.started_at = None
            job.completed_at = None
            job.next_attempt_at = None
            job.sequence = next(self._sequence)
            self._active[job.key] = job.id

        logger.info("calculation_job_requeued", job_id=job_id)
        return job_id

    def pause(self, cancel_pending: bool = False) -> int:
        """
        Stop handing out jobs. Processing jobs are not affected.

        Returns:
            Number of pending jobs cancelled
        """
        with self._lock:
            self._paused = True
            cancelled = self._cancel_pending_locked() if cancel_pending else 0
        logger.info("calculation_queue_paused", cancelled_jobs=cancelled)
        return cancelled

    def resume(self) -> None:
        with self._lock:
            self._paused = False
        logger.info("calculation_queue_resumed")

    def clear(self) -> int:
        """Cancel every pending job."""
        with self._lock:
            cancelled = self._cancel_pending_locked()
        logger.info("calculation_queue_cleared", cancelled_jobs=cancelled)
        return cancelled

    def _cancel_pending_locked(self) -> int:
        pending = [j for j in self._jobs.values() if j.status == JobStatus.PENDING]
        for job in pending:
            self._cancel_locked(job)
        return len(pending)

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reap_stuck_jobs(self) -> list[str]:
        """
        Fail jobs that have been processing longer than ``stuck_timeout``.

        Reaped jobs go through the normal retry path; a worker that later
        reports on such a job holds a stale claim and is ignored.
        """
        with self._lock:
            now = self._clock()
            limit = timedelta(seconds=self.stuck_timeout)
            stuck = [
                job for job in self._jobs.values()
                if job.status == JobStatus.PROCESSING
                and job.started_at is not None
                and now - job.started_at > limit
            ]
            for job in stuck:
                logger.warning(
                    "stuck_calculation_job_reaped",
                    job_id=job.id,
                    started_at=job.started_at.isoformat(),
                    stuck_timeout=self.stuck_timeout,
                )
                self._fail_locked(
                    job,
                    TransientError(
                        f"Job stuck in processing for more than {self.stuck_timeout}s"
                    ),
                )
            return [job.id for job in stuck]

    def prune_history(self) -> int:
        """Drop the oldest finished jobs beyond the retention limits."""
        with self._lock:
            removed = 0
            buckets = (
                ((JobStatus.COMPLETED, JobStatus.CANCELLED), self.max_completed_jobs),
                ((JobStatus.FAILED,), self.max_failed_jobs),
            )
            for statuses, limit in buckets:
                finished = sorted(
                    (j for j in self._jobs.values() if j.status in statuses),
                    key=lambda j: j.completed_at or j.created_at,
                    reverse=True,
                )
                for job in finished[limit:]:
                    del self._jobs[job.id]
                    removed += 1
        if removed:
            logger.debug("calculation_history_pruned", removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def _require(self, job_id: str) -> CalculationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Job not found: {job_id}", details={"job_id": job_id})
        return job

    def get(self, job_id: str) -> CalculationJob:
        with self._lock:
            return copy.deepcopy(self._require(job_id))

    def jobs(self, status: JobStatus | None = None) -> list[CalculationJob]:
        """All retained jobs in submission order, optionally filtered."""
        with self._lock:
            selected = [
                j for j in self._jobs.values() if status is None or j.status == status
            ]
            selected.sort(key=lambda j: j.sequence)
            return copy.deepcopy(selected)

    def history(self, league_id: int | None = None, limit: int = 50) -> list[CalculationJob]:
        """Completed and failed jobs, newest first."""
        with self._lock:
            finished = [
                j for j in self._jobs.values()
                if j.status in (JobStatus.COMPLETED, JobStatus.FAILED)
                and (league_id is None or j.league_id == league_id)
            ]
            finished.sort(key=lambda j: j.completed_at or j.created_at, reverse=True)
            return copy.deepcopy(finished[:limit])

    def state(self) -> QueueState:
        """Consistent copy of the whole queue for reporting."""
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.sequence)
            counts = {status.value: 0 for status in JobStatus}
            for job in jobs:
                counts[job.status.value] += 1
            return QueueState(
                timestamp=self._clock(),
                is_paused=self._paused,
                jobs=copy.deepcopy(jobs),
                recent_failures=list(self._failures),
                retries_scheduled=self._retries_scheduled,
                stuck_timeout=self.stuck_timeout,
                counts=counts,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)
