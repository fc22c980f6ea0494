"""Status codes, kinds and classifications used across subsystem boundaries."""

from enum import StrEnum


class RunStatus(StrEnum):
    """Status of a workflow run as reported by the run listing.

    Remote statuses outside this set (Skipped, Aborted, TimedOut, ...) are
    mapped to UNKNOWN by from_remote().
    """

    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    RUNNING = "Running"
    WAITING = "Waiting"
    UNKNOWN = "Unknown"

    @classmethod
    def from_remote(cls, value: str | None) -> "RunStatus":
        """Map a remote status string onto the known set (case-insensitive)."""
        if not value:
            return cls.UNKNOWN
        lowered = value.lower()
        for member in cls:
            if member.value.lower() == lowered:
                return member
        return cls.UNKNOWN


class TriggerType(StrEnum):
    """Classified type of a workflow trigger.

    Only HTTP triggers capture a replayable request payload.
    """

    HTTP = "Http"
    RECURRENCE = "Recurrence"
    OTHER = "Other"
    UNKNOWN = "Unknown"


class ErrorKind(StrEnum):
    """Discriminant of the error taxonomy.

    RATE_LIMITED, PERMANENT and TRANSIENT are absorbed by the retry executor;
    the rest propagate immediately.
    """

    NOT_AUTHENTICATED = "not_authenticated"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    PERMANENT = "permanent"
    TRANSIENT = "transient"
    CANCELLED = "cancelled"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.PERMANENT, ErrorKind.TRANSIENT})


class OutcomeStatus(StrEnum):
    """Final status of one run within a batch."""

    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class ProgressStatus(StrEnum):
    """Status carried by a progress event."""

    PREFETCHING = "prefetching"
    RETRYING = "retrying"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"
