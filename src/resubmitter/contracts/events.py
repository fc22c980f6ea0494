"""Progress events streamed to the caller during a batch."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from resubmitter.contracts.enums import ProgressStatus


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """One state transition of one run (or of the batch, for PREFETCHING).

    Attributes:
        run_id: Run the event refers to; empty for batch-level events.
        status: Transition being reported.
        current: Completed runs so far (success + error). Never decreases.
        total: Number of runs in the batch.
        error: Error text for ERROR events.
        retry_attempt: 1-based attempt that just failed, for RETRYING events.
        retry_reason: Human-readable classification, for RETRYING events.
        retry_delay_ms: Backoff before the next attempt, for RETRYING events.
    """

    run_id: str
    status: ProgressStatus
    current: int
    total: int
    error: str | None = None
    retry_attempt: int | None = None
    retry_reason: str | None = None
    retry_delay_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output, omitting unset optional fields."""
        data: dict[str, Any] = {
            "run_id": self.run_id,
            "status": self.status.value,
            "current": self.current,
            "total": self.total,
        }
        for key in ("error", "retry_attempt", "retry_reason", "retry_delay_ms"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


# Progress sinks are plain synchronous callables; they must not block.
ProgressCallback = Callable[[ProgressEvent], None]
