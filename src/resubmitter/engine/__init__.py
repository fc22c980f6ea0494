# src/resubmitter/engine/__init__.py
"""Resubmission engine: search, trigger metadata, retry, protocols, batches.

- RunSearchPaginator: time-window search over the run listing
- TriggerMetadataCache: trigger name/type/callback URL and inputs links
- RetryExecutor: classified retry with tenacity
- StandardResubmit / CallbackReplay: the two resubmission protocols
- BatchOrchestrator: sequential or chunked-parallel batches

Example:
    from resubmitter.engine import BatchOptions, BatchOrchestrator

    async with ManagementClient(token_provider) as client:
        orchestrator = BatchOrchestrator.from_settings(client, settings)
        result = await orchestrator.run_batch(ref, run_ids, BatchOptions(sequential=True))
"""

from resubmitter.engine.cache import TriggerMetadataCache, classify_trigger, supports_callback_replay
from resubmitter.engine.orchestrator import BatchOptions, BatchOrchestrator
from resubmitter.engine.protocols import CallbackReplay, ResubmitProtocol, StandardResubmit, select_protocol
from resubmitter.engine.replay import ReplayRequest, build_replay_request
from resubmitter.engine.retry import RetryConfig, RetryContext, RetryExecutor, classify_error, exponential_backoff
from resubmitter.engine.search import RunSearchPaginator, parse_timestamp

__all__ = [
    "BatchOptions",
    "BatchOrchestrator",
    "CallbackReplay",
    "ReplayRequest",
    "ResubmitProtocol",
    "RetryConfig",
    "RetryContext",
    "RetryExecutor",
    "RunSearchPaginator",
    "StandardResubmit",
    "TriggerMetadataCache",
    "build_replay_request",
    "classify_error",
    "classify_trigger",
    "exponential_backoff",
    "parse_timestamp",
    "select_protocol",
    "supports_callback_replay",
]
