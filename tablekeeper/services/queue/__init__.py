"""Calculation job queue and worker pool."""

from tablekeeper.services.queue.jobs import CalculationJob, JobError, JobStatus, Priority
from tablekeeper.services.queue.manager import CalculationQueue, QueueState
from tablekeeper.services.queue.retry import RetryPolicy, no_jitter, proportional_jitter
from tablekeeper.services.queue.worker import WorkerPool

__all__ = [
    "CalculationJob",
    "CalculationQueue",
    "JobError",
    "JobStatus",
    "Priority",
    "QueueState",
    "RetryPolicy",
    "WorkerPool",
    "no_jitter",
    "proportional_jitter",
]
