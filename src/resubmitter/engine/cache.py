# src/resubmitter/engine/cache.py
"""Trigger metadata cache.

Discovers and caches, per workflow, the trigger name, its classified type,
its signed callback URL, and per-run links to the captured trigger payload.
The management API enforces a low request quota over a rolling window, so
one discovery call per run is not affordable for large batches.

The cache is an explicit object passed to collaborators, never module-level
state. Every cached value is a deterministic function of its key, so
concurrent tasks racing to fill the same entry converge on the same value
and no locking is needed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

import structlog

from resubmitter.clients.management import ManagementClient
from resubmitter.contracts.enums import TriggerType
from resubmitter.contracts.errors import NotFoundError, OperationCancelled
from resubmitter.contracts.workflow import RunIdentifier, WorkflowReference
from resubmitter.core.cancellation import CancellationToken
from resubmitter.engine.search import next_page_link

logger = structlog.get_logger(__name__)

_HTTP_MARKERS: tuple[str, ...] = ("request", "http", "manual")
_RECURRENCE_MARKERS: tuple[str, ...] = ("recurrence", "schedule")


def _classify_text(text: str) -> TriggerType | None:
    lowered = text.lower()
    if any(marker in lowered for marker in _HTTP_MARKERS):
        return TriggerType.HTTP
    if any(marker in lowered for marker in _RECURRENCE_MARKERS):
        return TriggerType.RECURRENCE
    return None


def classify_trigger(explicit_type: str | None, trigger_name: str | None) -> TriggerType:
    """Classify a trigger from its declared type, falling back to its name.

    An explicit type that matches no known marker is OTHER; a name that
    matches none is UNKNOWN (the name alone proves nothing).
    """
    if explicit_type and explicit_type.strip():
        return _classify_text(explicit_type) or TriggerType.OTHER
    if trigger_name:
        return _classify_text(trigger_name) or TriggerType.UNKNOWN
    return TriggerType.UNKNOWN


def supports_callback_replay(trigger_type: TriggerType) -> bool:
    """Only HTTP triggers capture a request that can be replayed."""
    return trigger_type == TriggerType.HTTP


def payload_link(history: dict[str, Any]) -> str | None:
    """Signed link to a trigger history's captured payload (inputs, else outputs)."""
    properties = history.get("properties") or {}
    for key in ("inputsLink", "outputsLink"):
        link = properties.get(key) or {}
        uri = link.get("uri")
        if uri:
            return str(uri)
    return None


def _as_object(value: Any) -> dict[str, Any]:
    """A decoded response body as a dict; anything else reads as empty."""
    return value if isinstance(value, dict) else {}


def history_run_id(history: dict[str, Any]) -> str | None:
    """Run identifier of a trigger history record."""
    name = history.get("name")
    if name:
        return str(name)
    run = (history.get("properties") or {}).get("run") or {}
    run_name = run.get("name")
    return str(run_name) if run_name else None


class TriggerMetadataCache:
    """Cache-then-fetch resolution of trigger metadata.

    Lifetimes:
    - trigger name / type / callback URL: life of the cache instance, or
      until clear()
    - inputs links: batch-scoped; the orchestrator calls
      clear_inputs_links() after every batch to bound memory
    """

    def __init__(self, client: ManagementClient, *, page_delay_seconds: float = 0.3) -> None:
        self._client = client
        self._page_delay = page_delay_seconds
        self._trigger_names: dict[WorkflowReference, str] = {}
        self._trigger_types: dict[WorkflowReference, TriggerType] = {}
        self._callback_urls: dict[tuple[WorkflowReference, str], str] = {}
        self._inputs_links: dict[tuple[WorkflowReference, RunIdentifier], str] = {}

    @property
    def inputs_link_count(self) -> int:
        return len(self._inputs_links)

    async def resolve_trigger_name(self, ref: WorkflowReference, sample_run_id: RunIdentifier) -> str:
        """Trigger name of the workflow, discovered from one run's detail record.

        Raises:
            NotFoundError: If the run detail carries no trigger name
        """
        cached = self._trigger_names.get(ref)
        if cached is not None:
            return cached

        detail = await self._client.get_json(self._client.run_url(ref, sample_run_id))
        trigger = (_as_object(detail).get("properties") or {}).get("trigger") or {}
        name = trigger.get("name")
        if not name:
            raise NotFoundError(f"Could not determine trigger name for run {sample_run_id}")

        self._trigger_names[ref] = name
        logger.debug("trigger_name_resolved", workflow=str(ref), trigger=name)
        return name

    async def resolve_trigger_type(self, ref: WorkflowReference) -> TriggerType:
        """Classified type of the workflow's trigger.

        Raises:
            NotFoundError: If the workflow has no triggers
        """
        cached = self._trigger_types.get(ref)
        if cached is not None:
            return cached

        listing = await self._client.get_json(self._client.triggers_url(ref))
        triggers: list[dict[str, Any]] = _as_object(listing).get("value") or []
        if not triggers:
            raise NotFoundError(f"Workflow {ref.workflow_name} has no triggers")

        known_name = self._trigger_names.get(ref)
        trigger = next((t for t in triggers if known_name and t.get("name") == known_name), triggers[0])
        properties = trigger.get("properties") or {}
        explicit = properties.get("type") or properties.get("kind")
        trigger_type = classify_trigger(explicit, trigger.get("name"))

        self._trigger_types[ref] = trigger_type
        logger.debug("trigger_type_resolved", workflow=str(ref), trigger_type=trigger_type.value)
        return trigger_type

    async def resolve_callback_url(self, ref: WorkflowReference, trigger_name: str) -> str:
        """Signed public callback URL of the trigger.

        Raises:
            NotFoundError: If the trigger exposes no callback URL
        """
        key = (ref, trigger_name)
        cached = self._callback_urls.get(key)
        if cached is not None:
            return cached

        data = await self._client.post(self._client.callback_url_endpoint(ref, trigger_name))
        url = _as_object(data).get("value")
        if not url:
            raise NotFoundError(f"No callback URL available for trigger {trigger_name}")

        self._callback_urls[key] = url
        return url

    async def bulk_prefetch_inputs_links(
        self,
        ref: WorkflowReference,
        run_ids: Iterable[RunIdentifier],
        *,
        cancellation: CancellationToken | None = None,
    ) -> int:
        """Populate inputs links for many runs from one walk of the trigger history.

        Replaces one history call per run with one call per listing page.
        Also resolves the trigger name and callback URL as a side effect.
        The walk stops early at a malformed page or when ``cancellation`` is
        set; runs left without a link fall back to per-run lookups.

        Returns:
            Number of requested runs that now have a cached link
        """
        requested = list(dict.fromkeys(run_ids))
        if not requested:
            return 0

        trigger_name = await self.resolve_trigger_name(ref, requested[0])
        await self.resolve_callback_url(ref, trigger_name)

        pending = {run_id for run_id in requested if (ref, run_id) not in self._inputs_links}
        next_url: str | None = self._client.histories_url(ref, trigger_name) if pending else None
        pages = 0
        while next_url:
            if cancellation is not None and cancellation.cancelled:
                break
            page = await self._client.get_json(next_url)
            pages += 1
            if not isinstance(page, dict):
                logger.warning("malformed_history_page", workflow=str(ref), page=pages, page_type=type(page).__name__)
                break
            for history in page.get("value") or []:
                if not isinstance(history, dict):
                    continue
                run_id = history_run_id(history)
                if run_id is None or run_id not in pending:
                    continue
                link = payload_link(history)
                if link:
                    self._inputs_links[(ref, run_id)] = link
                    pending.discard(run_id)

            if not pending:
                break
            next_url = next_page_link(page)
            if next_url and self._page_delay > 0:
                if cancellation is None:
                    await asyncio.sleep(self._page_delay)
                else:
                    try:
                        await cancellation.sleep(self._page_delay)
                    except OperationCancelled:
                        break

        cached = sum(1 for run_id in requested if (ref, run_id) in self._inputs_links)
        logger.info(
            "inputs_links_prefetched",
            workflow=str(ref),
            requested=len(requested),
            cached=cached,
            pages=pages,
            cancelled=cancellation is not None and cancellation.cancelled,
        )
        return cached

    def get_inputs_link(self, ref: WorkflowReference, run_id: RunIdentifier) -> str | None:
        return self._inputs_links.get((ref, run_id))

    async def resolve_inputs_link(self, ref: WorkflowReference, trigger_name: str, run_id: RunIdentifier) -> str:
        """Inputs link for one run, from cache or from its trigger history record.

        Raises:
            NotFoundError: If the history has neither an inputs nor outputs link
                (expected for triggers that carry no payload)
        """
        cached = self._inputs_links.get((ref, run_id))
        if cached is not None:
            return cached

        history = await self._client.get_json(self._client.history_url(ref, trigger_name, run_id))
        link = payload_link(_as_object(history))
        if not link:
            raise NotFoundError(f"No inputs or outputs link found for run {run_id}")

        self._inputs_links[(ref, run_id)] = link
        return link

    def clear_inputs_links(self) -> None:
        """Drop all inputs links; trigger name/type/callback caches are kept."""
        self._inputs_links.clear()

    def clear(self) -> None:
        """Drop everything."""
        self._trigger_names.clear()
        self._trigger_types.clear()
        self._callback_urls.clear()
        self._inputs_links.clear()
