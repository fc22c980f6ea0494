# src/resubmitter/engine/retry.py
"""RetryExecutor: classified retry with tenacity integration.

Each failure is classified into one of three retryable kinds, each with its
own backoff policy:

- RATE_LIMITED: HTTP 429, or any error whose text reports throttling
  (including 4xx/5xx bodies); unbounded retries; server Retry-After
  preferred, otherwise exponential backoff capped at 5 minutes.
- PERMANENT: 4xx other than 429; gives up after 5 failures of this kind,
  exponential backoff capped at 10 seconds.
- TRANSIENT: 5xx, network errors, timeouts; gives up after 5 failures of
  this kind (configurable, None = unbounded), backoff capped at 60 seconds.

Everything else (NotFound, NotAuthenticated, programming errors) propagates
on the first failure.

Cancellation is checked before every attempt and interrupts backoff sleeps.
A cancelled operation raises OperationCancelled, never a failure.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, RetryError

from resubmitter.contracts.enums import RETRYABLE_KINDS, ErrorKind
from resubmitter.contracts.errors import (
    OperationCancelled,
    RateLimitedError,
    ResubmitError,
    RetriesExhausted,
)
from resubmitter.core.cancellation import CancellationToken

if TYPE_CHECKING:
    from resubmitter.core.config import RetrySettings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Called synchronously before each backoff sleep: (attempt, reason, delay_ms)
RetryCallback = Callable[[int, str, int], None]
SleepFunc = Callable[[float, CancellationToken], Awaitable[None]]

# "429" must stand alone: run ids and byte counts may contain those digits
_THROTTLE_PATTERN = re.compile(r"\b429\b|throttl|rate limit|too many requests", re.IGNORECASE)

# 2**30 seconds is far beyond every cap; bounds float growth on long rate-limit streaks.
_MAX_EXPONENT = 30


def classify_error(error: BaseException) -> ErrorKind | None:
    """Classify an exception for retry purposes.

    Returns:
        The ErrorKind of the failure, or None for errors that are not part of
        the taxonomy (they propagate without retry).
    """
    if isinstance(error, RetriesExhausted):
        return None
    if isinstance(error, ResubmitError) and error.kind not in (ErrorKind.PERMANENT, ErrorKind.TRANSIENT):
        return error.kind
    # Throttling reported in the body of a non-429 response still counts as rate limiting
    if _mentions_throttling(error):
        return ErrorKind.RATE_LIMITED
    if isinstance(error, ResubmitError):
        return error.kind
    if isinstance(error, (httpx.TransportError, TimeoutError, OSError)):
        return ErrorKind.TRANSIENT
    return None


def _mentions_throttling(error: BaseException) -> bool:
    return _THROTTLE_PATTERN.search(str(error)) is not None


def exponential_backoff(base: float, failures: int, cap: float) -> float:
    """base * 2^(failures-1), capped. ``failures`` is 1-based."""
    exponent = min(max(failures - 1, 0), _MAX_EXPONENT)
    return float(min(base * (2**exponent), cap))


@dataclass
class RetryConfig:
    """Configuration for classified retry behavior.

    Attempt limits count failures of one classification, not attempts
    overall: a run that was throttled ten times still gets five attempts
    against a transient outage.
    """

    base_delay: float = 1.0  # seconds
    rate_limit_max_delay: float = 300.0
    permanent_max_attempts: int = 5
    permanent_max_delay: float = 10.0
    transient_max_attempts: int | None = 5  # None = retry forever
    transient_max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.permanent_max_attempts < 1:
            raise ValueError("permanent_max_attempts must be >= 1")
        if self.transient_max_attempts is not None and self.transient_max_attempts < 1:
            raise ValueError("transient_max_attempts must be >= 1 or None")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryConfig:
        """Factory from RetrySettings config model."""
        return cls(
            base_delay=settings.base_delay_seconds,
            rate_limit_max_delay=settings.rate_limit_max_delay_seconds,
            permanent_max_attempts=settings.permanent_max_attempts,
            permanent_max_delay=settings.permanent_max_delay_seconds,
            transient_max_attempts=settings.transient_max_attempts,
            transient_max_delay=settings.transient_max_delay_seconds,
        )


@dataclass
class RetryContext:
    """Transient per-operation retry state. Never persisted.

    Updated once per failed attempt by RetryContext.record_failure(); the
    tenacity stop/wait hooks only read it.
    """

    attempt: int = 0
    kind: ErrorKind | None = None
    reason: str = ""
    delay_seconds: float = 0.0
    exhausted: bool = False
    failures: dict[ErrorKind, int] = field(default_factory=dict)

    @property
    def delay_ms(self) -> int:
        return round(self.delay_seconds * 1000)

    def record_failure(self, attempt: int, kind: ErrorKind, error: BaseException, config: RetryConfig) -> None:
        """Apply the policy for ``kind`` and compute the next delay."""
        self.attempt = attempt
        self.kind = kind
        count = self.failures.get(kind, 0) + 1
        self.failures[kind] = count
        status = getattr(error, "status_code", None)

        if kind == ErrorKind.RATE_LIMITED:
            retry_after = error.retry_after if isinstance(error, RateLimitedError) else None
            if retry_after is not None and retry_after > 0:
                self.delay_seconds = retry_after
            else:
                self.delay_seconds = exponential_backoff(config.base_delay, count, config.rate_limit_max_delay)
            self.reason = f"Rate-limited ({status if status and status != 429 else 429})"
            self.exhausted = False
        elif kind == ErrorKind.PERMANENT:
            self.delay_seconds = exponential_backoff(config.base_delay, count, config.permanent_max_delay)
            self.reason = f"Client error ({status or '4xx'})"
            self.exhausted = count >= config.permanent_max_attempts
        else:
            self.delay_seconds = exponential_backoff(config.base_delay, count, config.transient_max_delay)
            self.reason = f"Server error ({status})" if status else "Transient error"
            limit = config.transient_max_attempts
            self.exhausted = limit is not None and count >= limit


async def _token_sleep(seconds: float, cancellation: CancellationToken) -> None:
    await cancellation.sleep(seconds)


class RetryExecutor:
    """Runs an async operation with classified retry and cancellation.

    Uses tenacity's AsyncRetrying for the attempt loop; classification,
    stop and wait decisions come from a RetryContext updated on each
    failure.

    Example:
        executor = RetryExecutor(RetryConfig())

        await executor.execute_with_retry(
            lambda: protocol.execute(ref, run_id),
            cancellation=token,
            on_retry=lambda attempt, reason, delay_ms: report(run_id, attempt, reason, delay_ms),
        )
    """

    def __init__(self, config: RetryConfig, *, sleep: SleepFunc | None = None) -> None:
        """Initialize with config.

        Args:
            config: Retry configuration
            sleep: Cancellable sleep (defaults to CancellationToken.sleep)
        """
        self._config = config
        self._sleep = sleep or _token_sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        cancellation: CancellationToken,
        on_retry: RetryCallback | None = None,
    ) -> T:
        """Execute operation with classified retry.

        Args:
            operation: Zero-argument coroutine factory, invoked once per attempt
            cancellation: Batch cancellation token
            on_retry: Optional callback (attempt, reason, delay_ms) before each sleep

        Returns:
            Result of operation

        Raises:
            OperationCancelled: If cancellation was observed
            RetriesExhausted: If a permanent/transient retry limit was reached
            Exception: Non-retryable errors, unchanged
        """
        context = RetryContext()
        config = self._config
        sleep = self._sleep

        async def attempt() -> T:
            cancellation.raise_if_cancelled()
            try:
                return await operation()
            except OperationCancelled:
                raise
            except Exception as e:
                # In-flight call finished after cancel: discard its failure.
                if cancellation.cancelled:
                    raise OperationCancelled("Operation cancelled") from e
                raise

        def should_retry(retry_state: RetryCallState) -> bool:
            outcome = retry_state.outcome
            if outcome is None or not outcome.failed:
                return False
            error = outcome.exception()
            assert error is not None
            kind = classify_error(error)
            if kind not in RETRYABLE_KINDS:
                return False
            assert kind is not None
            context.record_failure(retry_state.attempt_number, kind, error, config)
            return True

        def should_stop(retry_state: RetryCallState) -> bool:
            return context.exhausted

        def next_wait(retry_state: RetryCallState) -> float:
            return context.delay_seconds

        def before_sleep(retry_state: RetryCallState) -> None:
            logger.info(
                "retry_scheduled",
                attempt=context.attempt,
                reason=context.reason,
                delay_ms=context.delay_ms,
            )
            if on_retry is not None:
                on_retry(context.attempt, context.reason, context.delay_ms)

        async def cancellable_sleep(seconds: float) -> None:
            await sleep(seconds, cancellation)

        retrying = AsyncRetrying(
            retry=should_retry,
            stop=should_stop,
            wait=next_wait,
            before_sleep=before_sleep,
            sleep=cancellable_sleep,
            reraise=False,  # RetryError is converted to RetriesExhausted below
        )

        try:
            return await retrying(attempt)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            assert last_error is not None, "RetryError without exception is impossible"
            raise RetriesExhausted(context.attempt, last_error) from last_error
