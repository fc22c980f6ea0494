"""Per-run outcomes and the aggregated batch result.

These types answer: "What happened to each run in a batch?"

Invariant (enforced by BatchResult.record):
    success_count + failed_count + cancelled_count == number of recorded runs,
    and each run identifier is recorded exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from resubmitter.contracts.enums import OutcomeStatus


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Terminal outcome of a single run."""

    run_id: str
    status: OutcomeStatus
    error: str | None = None


@dataclass(frozen=True, slots=True)
class RunError:
    """Entry in BatchResult.errors, in the order failures were observed."""

    run_id: str
    error: str


@dataclass
class BatchResult:
    """Aggregate result of one batch.

    Owned exclusively by the orchestrator for the duration of run_batch().
    ``cancelled`` is True whenever the batch's cancellation signal was set
    before the batch ended, even if no run ended up skipped.
    """

    total: int
    success_count: int = 0
    failed_count: int = 0
    cancelled_count: int = 0
    cancelled: bool = False
    errors: list[RunError] = field(default_factory=list)
    outcomes: list[RunOutcome] = field(default_factory=list)
    _seen: set[str] = field(default_factory=set, repr=False, compare=False)

    def record(self, outcome: RunOutcome) -> None:
        """Record the terminal outcome of one run.

        Raises:
            ValueError: If the run already has an outcome. Counting a run twice
                would break the accounting invariant, so it is a bug.
        """
        if outcome.run_id in self._seen:
            raise ValueError(f"Run {outcome.run_id!r} already has an outcome in this batch")
        self._seen.add(outcome.run_id)
        self.outcomes.append(outcome)

        if outcome.status == OutcomeStatus.SUCCESS:
            self.success_count += 1
        elif outcome.status == OutcomeStatus.ERROR:
            self.failed_count += 1
            self.errors.append(RunError(run_id=outcome.run_id, error=outcome.error or ""))
        else:
            self.cancelled_count += 1
            self.cancelled = True

    @property
    def accounted(self) -> int:
        """Number of runs with a recorded outcome."""
        return self.success_count + self.failed_count + self.cancelled_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "success": self.success_count,
            "failed": self.failed_count,
            "cancelled_runs": self.cancelled_count,
            "cancelled": self.cancelled,
            "errors": [{"run_id": e.run_id, "error": e.error} for e in self.errors],
        }
