# src/resubmitter/core/cancellation.py
"""Per-batch cancellation token.

One token is created per batch and threaded through every suspending call
(retry sleeps, attempts, scheduling loops). Tokens are independent, so
cancelling one batch never affects another batch running concurrently.

Cancellation is cooperative and monotonic: once set it cannot be cleared.
It interrupts backoff sleeps immediately but cannot abort a network call
that is already in flight.
"""

from __future__ import annotations

import asyncio

from resubmitter.contracts.errors import OperationCancelled


class CancellationToken:
    """Monotonic cancellation signal backed by an asyncio.Event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Set the signal. Idempotent."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled")

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first.

        Raises:
            OperationCancelled: If the token is set before or during the sleep.
        """
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return
        raise OperationCancelled("Cancelled while waiting to retry")
