"""Tests for the error taxonomy and shared value types."""

import pytest

from resubmitter.contracts import (
    ErrorKind,
    NotAuthenticatedError,
    NotFoundError,
    OperationCancelled,
    PermanentError,
    ProgressEvent,
    ProgressStatus,
    RateLimitedError,
    RetriesExhausted,
    RunStatus,
    TransientError,
    WorkflowReference,
)


class TestErrorKinds:
    """Each variant carries its classification."""

    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (NotAuthenticatedError("no token"), ErrorKind.NOT_AUTHENTICATED),
            (NotFoundError("no trigger"), ErrorKind.NOT_FOUND),
            (RateLimitedError("slow down", retry_after=3.0), ErrorKind.RATE_LIMITED),
            (PermanentError("bad request", status_code=400), ErrorKind.PERMANENT),
            (TransientError("bad gateway", status_code=502), ErrorKind.TRANSIENT),
            (OperationCancelled("stop"), ErrorKind.CANCELLED),
        ],
    )
    def test_kind(self, error: Exception, kind: ErrorKind) -> None:
        assert error.kind == kind  # type: ignore[attr-defined]

    def test_rate_limited_defaults(self) -> None:
        error = RateLimitedError("slow down")

        assert error.status_code == 429
        assert error.retry_after is None

    def test_retries_exhausted_mirrors_last_error_kind(self) -> None:
        error = RetriesExhausted(5, PermanentError("API call failed (404): gone", status_code=404))

        assert error.kind == ErrorKind.PERMANENT
        assert error.attempts == 5
        assert str(error) == "Gave up after 5 attempts: API call failed (404): gone"

    def test_retries_exhausted_for_foreign_error_is_transient(self) -> None:
        error = RetriesExhausted(3, ConnectionResetError("reset"))

        assert error.kind == ErrorKind.TRANSIENT


class TestWorkflowReference:
    """Tests for WorkflowReference validation and identity."""

    def test_valid_reference_passes(self) -> None:
        WorkflowReference("sub", "rg", "app", "wf").validate()

    def test_blank_fields_are_reported(self) -> None:
        ref = WorkflowReference("sub", " ", "app", "")

        with pytest.raises(ValueError, match="resource_group, workflow_name"):
            ref.validate()

    def test_hashable_and_equal_by_value(self) -> None:
        assert {WorkflowReference("s", "r", "a", "w"): 1}[WorkflowReference("s", "r", "a", "w")] == 1

    def test_str(self) -> None:
        assert str(WorkflowReference("s", "r", "a", "w")) == "s/r/a/w"


class TestRunStatus:
    """Tests for mapping remote status strings."""

    def test_known_status_case_insensitive(self) -> None:
        assert RunStatus.from_remote("failed") == RunStatus.FAILED

    @pytest.mark.parametrize("value", [None, "", "Skipped", "TimedOut"])
    def test_unrecognized_status_is_unknown(self, value: str | None) -> None:
        assert RunStatus.from_remote(value) == RunStatus.UNKNOWN


class TestProgressEvent:
    """Tests for ProgressEvent serialization."""

    def test_to_dict_omits_unset_fields(self) -> None:
        event = ProgressEvent(run_id="r1", status=ProgressStatus.SUCCESS, current=1, total=2)

        assert event.to_dict() == {"run_id": "r1", "status": "success", "current": 1, "total": 2}

    def test_to_dict_includes_retry_fields(self) -> None:
        event = ProgressEvent(
            run_id="r1",
            status=ProgressStatus.RETRYING,
            current=0,
            total=1,
            retry_attempt=1,
            retry_reason="Rate-limited (429)",
            retry_delay_ms=3000,
        )

        assert event.to_dict()["retry_delay_ms"] == 3000
        assert event.to_dict()["retry_reason"] == "Rate-limited (429)"
