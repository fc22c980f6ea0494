"""Workflow identity and run records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from resubmitter.contracts.enums import RunStatus

# A run identifier is opaque and unique within one workflow.
RunIdentifier = str


@dataclass(frozen=True, slots=True)
class WorkflowReference:
    """Immutable address of one workflow inside a Logic App Standard site.

    Used as the root key of every trigger-metadata cache entry, so it must
    stay hashable.
    """

    subscription_id: str
    resource_group: str
    app_name: str
    workflow_name: str

    def validate(self) -> None:
        """Raise ValueError if any component is blank."""
        missing = [
            name
            for name in ("subscription_id", "resource_group", "app_name", "workflow_name")
            if not getattr(self, name) or not getattr(self, name).strip()
        ]
        if missing:
            raise ValueError(f"Invalid workflow reference, missing: {', '.join(missing)}")

    def __str__(self) -> str:
        return f"{self.subscription_id}/{self.resource_group}/{self.app_name}/{self.workflow_name}"


@dataclass(frozen=True, slots=True)
class WorkflowRun:
    """One run returned by the run search. Read-only downstream."""

    id: str
    name: RunIdentifier
    status: RunStatus
    start_time: datetime
    end_time: datetime | None = None
