"""Tests for run outcomes and batch accounting."""

import pytest

from resubmitter.contracts import BatchResult, OutcomeStatus, RunOutcome


class TestBatchResult:
    """Tests for BatchResult.record() accounting."""

    def test_counts_each_outcome_status(self) -> None:
        result = BatchResult(total=3)

        result.record(RunOutcome(run_id="a", status=OutcomeStatus.SUCCESS))
        result.record(RunOutcome(run_id="b", status=OutcomeStatus.ERROR, error="boom"))
        result.record(RunOutcome(run_id="c", status=OutcomeStatus.CANCELLED))

        assert result.success_count == 1
        assert result.failed_count == 1
        assert result.cancelled_count == 1
        assert result.accounted == result.total

    def test_error_outcome_appends_error_entry(self) -> None:
        result = BatchResult(total=1)

        result.record(RunOutcome(run_id="b", status=OutcomeStatus.ERROR, error="API call failed (404): gone"))

        assert [(e.run_id, e.error) for e in result.errors] == [("b", "API call failed (404): gone")]

    def test_cancelled_outcome_marks_batch_cancelled(self) -> None:
        result = BatchResult(total=1)
        assert result.cancelled is False

        result.record(RunOutcome(run_id="c", status=OutcomeStatus.CANCELLED))

        assert result.cancelled is True

    def test_same_run_recorded_twice_is_rejected(self) -> None:
        result = BatchResult(total=2)
        result.record(RunOutcome(run_id="a", status=OutcomeStatus.SUCCESS))

        with pytest.raises(ValueError, match="already has an outcome"):
            result.record(RunOutcome(run_id="a", status=OutcomeStatus.ERROR, error="late"))

        assert result.success_count == 1
        assert result.failed_count == 0

    def test_outcomes_keep_record_order(self) -> None:
        result = BatchResult(total=3)
        for run_id in ("z", "a", "m"):
            result.record(RunOutcome(run_id=run_id, status=OutcomeStatus.SUCCESS))

        assert [o.run_id for o in result.outcomes] == ["z", "a", "m"]

    def test_to_dict(self) -> None:
        result = BatchResult(total=2)
        result.record(RunOutcome(run_id="a", status=OutcomeStatus.SUCCESS))
        result.record(RunOutcome(run_id="b", status=OutcomeStatus.ERROR, error="boom"))

        assert result.to_dict() == {
            "total": 2,
            "success": 1,
            "failed": 1,
            "cancelled_runs": 0,
            "cancelled": False,
            "errors": [{"run_id": "b", "error": "boom"}],
        }
