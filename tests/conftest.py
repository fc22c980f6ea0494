# tests/conftest.py
"""Shared test fixtures and helpers.

Remote calls are mocked with respx at the httpx layer, so the real
ManagementClient (URL building, status mapping, headers) runs in every test
that touches the network.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio
from hypothesis import Phase, Verbosity, settings

from resubmitter.clients.auth import StaticTokenProvider
from resubmitter.clients.management import ManagementClient
from resubmitter.contracts import ProgressEvent, WorkflowReference
from resubmitter.core.cancellation import CancellationToken

MANAGEMENT = "https://management.azure.com"
SITE_PATH = "/subscriptions/sub-1/resourceGroups/rg-1/providers/Microsoft.Web/sites/app-1"
WORKFLOW_PATH = f"{SITE_PATH}/hostruntime/runtime/webhooks/workflow/api/management/workflows/orders"
WORKFLOW_URL = f"{MANAGEMENT}{WORKFLOW_PATH}"
TEST_TOKEN = "test-token"

CALLBACK_URL = "https://app-1.azurewebsites.net/api/orders/triggers/manual/invoke?api-version=2022-05-01&sp=%2Ftriggers%2Fmanual%2Frun&sv=1.0&sig=abc123"


def run_item(name: str, start_time: str | None, status: str = "Failed", **properties: Any) -> dict[str, Any]:
    """One entry of the run listing."""
    props: dict[str, Any] = {"status": status, **properties}
    if start_time is not None:
        props["startTime"] = start_time
    return {"id": f"{WORKFLOW_PATH}/runs/{name}", "name": name, "properties": props}


def run_detail(name: str, trigger_name: str = "manual") -> dict[str, Any]:
    """A run detail record carrying its trigger name."""
    return {"name": name, "properties": {"status": "Failed", "trigger": {"name": trigger_name}}}


def history_item(name: str, inputs_uri: str | None = None, outputs_uri: str | None = None) -> dict[str, Any]:
    """One entry of the trigger history listing."""
    props: dict[str, Any] = {"status": "Succeeded", "run": {"name": name}}
    if inputs_uri:
        props["inputsLink"] = {"uri": inputs_uri}
    if outputs_uri:
        props["outputsLink"] = {"uri": outputs_uri}
    return {"name": name, "properties": props}


class EventRecorder:
    """Collects progress events for assertions."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def statuses(self, run_id: str | None = None) -> list[str]:
        return [e.status.value for e in self.events if run_id is None or e.run_id == run_id]


@pytest.fixture
def workflow_ref() -> WorkflowReference:
    return WorkflowReference(
        subscription_id="sub-1",
        resource_group="rg-1",
        app_name="app-1",
        workflow_name="orders",
    )


@pytest_asyncio.fixture
async def client() -> AsyncIterator[ManagementClient]:
    """ManagementClient with a static token; mock routes with respx."""
    async with ManagementClient(StaticTokenProvider(TEST_TOKEN)) as management_client:
        yield management_client


@pytest.fixture
def cancellation() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
