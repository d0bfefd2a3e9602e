"""Calculation job records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Priority(str, Enum):
    """Job priority. Higher rank is dequeued first."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: "Priority | str") -> "Priority":
        """Accept enum members or case-insensitive names."""
        if isinstance(value, Priority):
            return value
        return cls(str(value).lower())


_PRIORITY_RANK = {Priority.LOW: 1, Priority.NORMAL: 2, Priority.HIGH: 3}


def max_priority(a: Priority, b: Priority) -> Priority:
    return a if a.rank >= b.rank else b


class JobStatus(str, Enum):
    """Job lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.PROCESSING)


@dataclass
class JobError:
    """One failed attempt of a job."""
    message: str
    error_type: str
    timestamp: datetime
    attempt: int
    retryable: bool


@dataclass
class CalculationJob:
    """A requested (re)calculation of one league table."""

    id: str
    league_id: int
    season_id: int
    priority: Priority
    created_at: datetime
    sequence: int
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    trigger: str = "UNKNOWN"
    description: str | None = None

    # Scheduling
    next_attempt_at: datetime | None = None
    claim_token: int = 0
    needs_rerun: bool = False
    rerun_priority: Priority | None = None
    follow_up_job_id: str | None = None

    error_history: list[JobError] = field(default_factory=list)
    result: dict[str, Any] | None = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.league_id, self.season_id)

    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        """Operator view of the job."""
        data = {
            "id": self.id,
            "leagueId": self.league_id,
            "seasonId": self.season_id,
            "priority": self.priority.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "trigger": self.trigger,
            "description": self.description,
            "createdAt": self.created_at,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "nextAttemptAt": self.next_attempt_at,
            "needsRerun": self.needs_rerun,
            "followUpJobId": self.follow_up_job_id,
            "error": self.error,
            "result": self.result,
            "durationSeconds": self.duration_seconds(),
        }
        if now is not None:
            data["ageSeconds"] = (now - self.created_at).total_seconds()
        return data

    def __repr__(self) -> str:
        return (
            f"<CalculationJob {self.id} league={self.league_id} "
            f"season={self.season_id} status={self.status.value}>"
        )
