"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core, clients
or engine. Settings classes are NOT re-exported here - import them from
resubmitter.core.config.
"""

from resubmitter.contracts.enums import (
    RETRYABLE_KINDS,
    ErrorKind,
    OutcomeStatus,
    ProgressStatus,
    RunStatus,
    TriggerType,
)
from resubmitter.contracts.errors import (
    NotAuthenticatedError,
    NotFoundError,
    OperationCancelled,
    PermanentError,
    RateLimitedError,
    ResubmitError,
    RetriesExhausted,
    TransientError,
)
from resubmitter.contracts.events import ProgressCallback, ProgressEvent
from resubmitter.contracts.results import BatchResult, RunError, RunOutcome
from resubmitter.contracts.workflow import RunIdentifier, WorkflowReference, WorkflowRun

__all__ = [
    "RETRYABLE_KINDS",
    "BatchResult",
    "ErrorKind",
    "NotAuthenticatedError",
    "NotFoundError",
    "OperationCancelled",
    "OutcomeStatus",
    "PermanentError",
    "ProgressCallback",
    "ProgressEvent",
    "ProgressStatus",
    "RateLimitedError",
    "ResubmitError",
    "RetriesExhausted",
    "RunError",
    "RunIdentifier",
    "RunOutcome",
    "RunStatus",
    "TransientError",
    "TriggerType",
    "WorkflowReference",
    "WorkflowRun",
]
