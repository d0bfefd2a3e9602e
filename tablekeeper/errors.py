"""Error taxonomy for table automation.

Each error carries the operator-facing code that tells a caller whether to
retry later, fix its input, or contact an operator.
"""

from typing import Any

RETRY_LATER = "RETRY_LATER"
FIX_INPUT = "FIX_INPUT"
CONTACT_OPERATOR = "CONTACT_OPERATOR"


class TableKeeperError(Exception):
    """Base class for all table automation errors."""

    code: str = CONTACT_OPERATOR
    http_status: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "type": type(self).__name__,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class InputError(TableKeeperError):
    """Malformed or inconsistent match data. Never retried."""

    code = FIX_INPUT
    http_status = 422


class TransientError(TableKeeperError):
    """Store unavailable or timed out. Retried with backoff."""

    code = RETRY_LATER
    http_status = 503
    retryable = True


class QueueOverload(TableKeeperError):
    """The queue is at its maximum size. The caller must back off."""

    code = RETRY_LATER
    http_status = 503


class SnapshotNotFound(TableKeeperError):
    """Rollback target does not exist."""

    http_status = 404


class SnapshotCorrupted(TableKeeperError):
    """Snapshot payload does not match its checksum."""

    http_status = 409


class CalculationInvariantViolation(TableKeeperError):
    """Calculated or persisted table breaks a standings invariant."""

    http_status = 500


class JobNotFound(TableKeeperError):
    """Unknown calculation job id."""

    code = FIX_INPUT
    http_status = 404


class InvalidJobTransition(TableKeeperError):
    """Requested job state change is not allowed from the current state."""

    code = FIX_INPUT
    http_status = 409


def is_retryable(error: BaseException) -> bool:
    """Whether a failed calculation may be attempted again."""
    if isinstance(error, TableKeeperError):
        return error.retryable
    # Unknown failures (driver errors, timeouts) are treated as transient
    return not isinstance(error, (ValueError, TypeError, KeyError, AssertionError))
