# src/resubmitter/engine/protocols.py
"""Resubmission protocols: two strategies sharing one contract.

- StandardResubmit re-invokes the run through the management API; the
  service records it as a resubmission of the original run.
- CallbackReplay re-sends the originally captured request payload to the
  trigger's public callback URL; the service sees a brand-new, unrelated run.

The protocol is chosen once per batch (select_protocol), not per call.
Neither call is idempotent at the server: each execute() issues exactly one
re-trigger, and the orchestrator ensures each run id is executed once per
batch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

import structlog

from resubmitter.clients.management import ManagementClient, redact_url
from resubmitter.contracts.errors import NotFoundError
from resubmitter.contracts.workflow import RunIdentifier, WorkflowReference
from resubmitter.engine.cache import TriggerMetadataCache
from resubmitter.engine.replay import build_replay_request

logger = structlog.get_logger(__name__)


class ResubmitProtocol(ABC):
    """Contract for re-triggering one run.

    Implementations raise the tagged errors from resubmitter.contracts.errors
    (NotAuthenticated, NotFound, RateLimited, Permanent, Transient); retry is
    applied by the caller.
    """

    name: ClassVar[str]
    creates_new_run: ClassVar[bool]

    def __init__(self, client: ManagementClient, cache: TriggerMetadataCache) -> None:
        self._client = client
        self._cache = cache

    @abstractmethod
    async def execute(self, ref: WorkflowReference, run_id: RunIdentifier) -> None:
        """Re-trigger ``run_id`` once."""


class StandardResubmit(ResubmitProtocol):
    """Re-invoke the run via the trigger-history resubmit endpoint."""

    name = "resubmit"
    creates_new_run = False

    async def execute(self, ref: WorkflowReference, run_id: RunIdentifier) -> None:
        trigger_name = await self._cache.resolve_trigger_name(ref, run_id)
        await self._client.post(self._client.resubmit_url(ref, trigger_name, run_id))
        logger.debug("run_resubmitted", workflow=str(ref), run_id=run_id)


class CallbackReplay(ResubmitProtocol):
    """Replay the captured trigger payload to the public callback URL.

    Prefers values prefetched into the cache and falls back to per-run
    discovery when prefetch was skipped or missed this run.
    """

    name = "replay"
    creates_new_run = True

    async def execute(self, ref: WorkflowReference, run_id: RunIdentifier) -> None:
        trigger_name = await self._cache.resolve_trigger_name(ref, run_id)
        callback_url = await self._cache.resolve_callback_url(ref, trigger_name)
        inputs_link = await self._cache.resolve_inputs_link(ref, trigger_name, run_id)

        envelope = await self._client.fetch_signed_json(inputs_link)
        if not isinstance(envelope, dict):
            # Never replay without the captured request
            raise NotFoundError(f"Captured payload for run {run_id} is not a request envelope")
        request = build_replay_request(callback_url, envelope)

        await self._client.send_replay(
            request.method,
            request.url,
            content=request.content,
            content_type=request.content_type,
        )
        logger.debug(
            "run_replayed",
            workflow=str(ref),
            run_id=run_id,
            method=request.method,
            target=redact_url(request.url),
        )


def select_protocol(use_callback_url: bool, client: ManagementClient, cache: TriggerMetadataCache) -> ResubmitProtocol:
    """Pick the protocol for a whole batch."""
    if use_callback_url:
        return CallbackReplay(client, cache)
    return StandardResubmit(client, cache)
