# src/resubmitter/engine/orchestrator.py
"""BatchOrchestrator: drives a list of runs through a resubmission protocol.

Scheduling:
- sequential: one run at a time, in input order. Completion-report order
  equals input order; use when replay order must mirror the original
  chronology.
- parallel: fixed-width chunks run with asyncio.gather; each chunk is fully
  awaited before the next starts. Runs start in chunk order but may
  complete in any order within a chunk. This is bounded parallelism, not a
  rate limiter: retry backoff is the only defense against throttling.

Every run ends in exactly one outcome (success, error or cancelled). A single
run's failure never escapes run_batch(); only setup errors (invalid workflow
reference) raise, and they raise before any run is attempted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
import structlog

from resubmitter.clients.management import ManagementClient
from resubmitter.contracts.enums import OutcomeStatus, ProgressStatus
from resubmitter.contracts.errors import OperationCancelled, ResubmitError
from resubmitter.contracts.events import ProgressCallback, ProgressEvent
from resubmitter.contracts.results import BatchResult, RunOutcome
from resubmitter.contracts.workflow import RunIdentifier, WorkflowReference
from resubmitter.core.cancellation import CancellationToken
from resubmitter.engine.cache import TriggerMetadataCache
from resubmitter.engine.protocols import ResubmitProtocol, select_protocol
from resubmitter.engine.retry import RetryConfig, RetryExecutor

if TYPE_CHECKING:
    from resubmitter.core.config import ResubmitterSettings

logger = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 10


@dataclass(frozen=True, slots=True)
class BatchOptions:
    """Per-batch options.

    Attributes:
        sequential: Process runs strictly one at a time in input order
        use_callback_url: Replay captured payloads to the trigger callback URL
            instead of the management resubmit endpoint. Callers must check
            the trigger type supports replay before enabling this.
    """

    sequential: bool = False
    use_callback_url: bool = False


class _BatchRun:
    """Mutable state of one run_batch() call."""

    def __init__(
        self,
        ref: WorkflowReference,
        run_ids: list[RunIdentifier],
        protocol: ResubmitProtocol,
        cancellation: CancellationToken,
        on_progress: ProgressCallback | None,
    ) -> None:
        self.ref = ref
        self.run_ids = run_ids
        self.protocol = protocol
        self.cancellation = cancellation
        self.on_progress = on_progress
        self.result = BatchResult(total=len(run_ids))
        self.completed_count = 0

    def emit(self, run_id: str, status: ProgressStatus, **extra: object) -> None:
        if self.on_progress is None:
            return
        self.on_progress(
            ProgressEvent(
                run_id=run_id,
                status=status,
                current=self.completed_count,
                total=self.result.total,
                **extra,  # type: ignore[arg-type]
            )
        )


class BatchOrchestrator:
    """Runs batches of resubmissions with retry, progress and cancellation.

    The trigger metadata cache is shared by all runs of a batch, and across
    batches if the caller reuses the orchestrator.

    Example:
        orchestrator = BatchOrchestrator(client, cache, RetryExecutor(RetryConfig()))
        result = await orchestrator.run_batch(
            ref,
            ["08584...", "08585..."],
            BatchOptions(sequential=True),
            on_progress=print,
        )
        assert result.success_count + result.failed_count + result.cancelled_count == result.total
    """

    def __init__(
        self,
        client: ManagementClient,
        cache: TriggerMetadataCache,
        retry_executor: RetryExecutor,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._client = client
        self._cache = cache
        self._retry = retry_executor
        self._concurrency = concurrency
        self._active: set[CancellationToken] = set()

    @classmethod
    def from_settings(
        cls,
        client: ManagementClient,
        settings: ResubmitterSettings,
        *,
        cache: TriggerMetadataCache | None = None,
    ) -> BatchOrchestrator:
        """Wire cache, retry executor and concurrency from ResubmitterSettings."""
        return cls(
            client,
            cache or TriggerMetadataCache(client, page_delay_seconds=settings.batch.page_delay_seconds),
            RetryExecutor(RetryConfig.from_settings(settings.retry)),
            concurrency=settings.batch.concurrency,
        )

    @property
    def cache(self) -> TriggerMetadataCache:
        return self._cache

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def cancel(self) -> None:
        """Request cancellation of every batch currently running on this orchestrator."""
        for token in list(self._active):
            token.cancel()

    async def run_batch(
        self,
        ref: WorkflowReference,
        run_ids: list[RunIdentifier],
        options: BatchOptions | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> BatchResult:
        """Resubmit ``run_ids`` and return the aggregated result.

        Args:
            ref: Target workflow
            run_ids: Runs to resubmit, in the order to start them
            options: Scheduling and protocol options
            on_progress: Synchronous callback receiving one event per transition
            cancellation: Token to observe; a fresh one is created if omitted

        Returns:
            BatchResult with explicit counts; cancellation is reported via
            ``cancelled``, never raised.

        Raises:
            ValueError: If ``ref`` is invalid (before any run is attempted)
        """
        ref.validate()
        options = options or BatchOptions()
        token = cancellation or CancellationToken()

        unique_ids = list(dict.fromkeys(run_ids))
        if len(unique_ids) != len(run_ids):
            logger.warning(
                "duplicate_run_ids_dropped",
                workflow=str(ref),
                requested=len(run_ids),
                unique=len(unique_ids),
            )

        protocol = select_protocol(options.use_callback_url, self._client, self._cache)
        batch = _BatchRun(ref, unique_ids, protocol, token, on_progress)
        log = logger.bind(workflow=str(ref), batch_size=len(unique_ids), protocol=protocol.name)
        log.info("batch_started", sequential=options.sequential)

        self._active.add(token)
        try:
            if options.use_callback_url and unique_ids and not token.cancelled:
                await self._prefetch(batch, log)

            if options.sequential:
                for run_id in unique_ids:
                    await self._process_run(batch, run_id)
            else:
                for start in range(0, len(unique_ids), self._concurrency):
                    chunk = unique_ids[start : start + self._concurrency]
                    await asyncio.gather(*(self._process_run(batch, run_id) for run_id in chunk))
        finally:
            self._active.discard(token)
            self._cache.clear_inputs_links()

        if token.cancelled:
            batch.result.cancelled = True

        log.info(
            "batch_finished",
            success=batch.result.success_count,
            failed=batch.result.failed_count,
            cancelled_runs=batch.result.cancelled_count,
            cancelled=batch.result.cancelled,
        )
        return batch.result

    async def _prefetch(self, batch: _BatchRun, log: structlog.stdlib.BoundLogger) -> None:
        """Best-effort bulk prefetch; runs fall back to per-run lookups on failure."""
        batch.emit("", ProgressStatus.PREFETCHING)
        try:
            await self._cache.bulk_prefetch_inputs_links(batch.ref, batch.run_ids, cancellation=batch.cancellation)
        except (ResubmitError, httpx.HTTPError) as e:
            log.warning("prefetch_failed", error=str(e), error_type=type(e).__name__)

    async def _process_run(self, batch: _BatchRun, run_id: RunIdentifier) -> None:
        if batch.cancellation.cancelled:
            self._record_cancelled(batch, run_id)
            return

        def on_retry(attempt: int, reason: str, delay_ms: int) -> None:
            batch.emit(
                run_id,
                ProgressStatus.RETRYING,
                retry_attempt=attempt,
                retry_reason=reason,
                retry_delay_ms=delay_ms,
            )

        try:
            await self._retry.execute_with_retry(
                lambda: batch.protocol.execute(batch.ref, run_id),
                cancellation=batch.cancellation,
                on_retry=on_retry,
            )
        except OperationCancelled:
            self._record_cancelled(batch, run_id)
            return
        except Exception as e:
            batch.result.record(RunOutcome(run_id=run_id, status=OutcomeStatus.ERROR, error=str(e)))
            batch.completed_count += 1
            logger.warning("run_failed", workflow=str(batch.ref), run_id=run_id, error=str(e), error_type=type(e).__name__)
            batch.emit(run_id, ProgressStatus.ERROR, error=str(e))
            return

        batch.result.record(RunOutcome(run_id=run_id, status=OutcomeStatus.SUCCESS))
        batch.completed_count += 1
        batch.emit(run_id, ProgressStatus.SUCCESS)

    def _record_cancelled(self, batch: _BatchRun, run_id: RunIdentifier) -> None:
        batch.result.record(RunOutcome(run_id=run_id, status=OutcomeStatus.CANCELLED))
        batch.emit(run_id, ProgressStatus.CANCELLED)
