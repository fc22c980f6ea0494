"""Error taxonomy for resubmission.

Every error carries a class-level ``kind`` discriminant so callers branch on
the classification rather than on ad hoc attributes. Only the fields relevant
to a variant are carried by it (retry_after for rate limits, status_code for
HTTP failures).
"""

from __future__ import annotations

from typing import ClassVar

from resubmitter.contracts.enums import ErrorKind


class ResubmitError(Exception):
    """Base error for everything raised by the resubmission core."""

    kind: ClassVar[ErrorKind]


class NotAuthenticatedError(ResubmitError):
    """No bearer credential is available (not signed in, or token acquisition failed)."""

    kind = ErrorKind.NOT_AUTHENTICATED


class NotFoundError(ResubmitError):
    """Required metadata is missing: trigger name, callback URL or inputs link."""

    kind = ErrorKind.NOT_FOUND


class RateLimitedError(ResubmitError):
    """HTTP 429 or throttling reported by the remote API.

    Attributes:
        status_code: Always 429 when raised from an HTTP response
        retry_after: Server-supplied delay in seconds, or None if absent
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, *, retry_after: float | None = None, status_code: int = 429) -> None:
        super().__init__(message)
        self.retry_after = retry_after
        self.status_code = status_code


class PermanentError(ResubmitError):
    """A 4xx response other than 429. Retrying will not help beyond a few attempts."""

    kind = ErrorKind.PERMANENT

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientError(ResubmitError):
    """5xx response, connection failure or timeout."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OperationCancelled(ResubmitError):
    """The batch cancellation signal was observed.

    Distinct from a failure: cancelled runs are never counted as failed.
    """

    kind = ErrorKind.CANCELLED


class RetriesExhausted(ResubmitError):
    """Raised when the retry limit for a classification is reached.

    The kind mirrors the last underlying error so callers can still tell a
    permanent give-up from a transient one.
    """

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        if isinstance(self.last_error, ResubmitError):
            return self.last_error.kind
        return ErrorKind.TRANSIENT
