# src/resubmitter/engine/search.py
"""Run search over the paginated, newest-first run listing.

Discovery path only: remote failures propagate immediately and are never
retried here. Retry belongs to the resubmission path.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator, Collection
from datetime import UTC, datetime
from typing import Any

import structlog

from resubmitter.clients.management import ManagementClient
from resubmitter.contracts.enums import RunStatus
from resubmitter.contracts.workflow import WorkflowReference, WorkflowRun

logger = structlog.get_logger(__name__)

# Azure emits up to 7 fractional-second digits; datetime supports 6.
_FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp from the remote API into an aware datetime.

    Naive values are assumed to be UTC.
    """
    normalized = _FRACTION_PATTERN.sub(r"\1", value.strip())
    parsed = datetime.fromisoformat(normalized)
    return ensure_aware(parsed)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def next_page_link(page: dict[str, Any]) -> str | None:
    """Return the continuation link of a listing page, if any."""
    link = page.get("nextLink") or page.get("@odata.nextLink")
    return link or None


class RunSearchPaginator:
    """Walks the run listing and yields runs inside a time window.

    The listing is ordered by start time, newest first. The first run older
    than the window start ends the walk without fetching further pages.

    Example:
        paginator = RunSearchPaginator(client)
        async for run in paginator.search(ref, start, end, {RunStatus.FAILED}):
            print(run.name)
    """

    def __init__(self, client: ManagementClient, *, page_delay_seconds: float = 0.3) -> None:
        self._client = client
        self._page_delay = page_delay_seconds

    async def search(
        self,
        ref: WorkflowReference,
        start_time: datetime,
        end_time: datetime,
        status_filter: Collection[RunStatus] = frozenset(),
    ) -> AsyncIterator[WorkflowRun]:
        """Yield runs with start_time in [start_time, end_time] matching status_filter.

        Each call starts a fresh walk from the first page.

        Args:
            ref: Workflow to search
            start_time: Inclusive window start
            end_time: Inclusive window end
            status_filter: Statuses to keep; empty keeps all

        Raises:
            ResubmitError: Any remote failure, unretried
        """
        start = ensure_aware(start_time)
        end = ensure_aware(end_time)
        if start > end:
            raise ValueError(f"start_time {start.isoformat()} is after end_time {end.isoformat()}")
        wanted = frozenset(status_filter)

        next_url: str | None = self._client.runs_url(ref)
        pages = 0
        while next_url:
            page = await self._client.get_json(next_url)
            pages += 1

            reached_older = False
            for item in page.get("value") or []:
                properties = item.get("properties") or {}
                raw_start = properties.get("startTime")
                if not raw_start:
                    continue
                run_start = parse_timestamp(raw_start)

                if run_start < start:
                    reached_older = True
                    break
                if run_start > end:
                    continue

                status = RunStatus.from_remote(properties.get("status"))
                if wanted and status not in wanted:
                    continue

                raw_end = properties.get("endTime")
                yield WorkflowRun(
                    id=item.get("id", ""),
                    name=item.get("name", ""),
                    status=status,
                    start_time=run_start,
                    end_time=parse_timestamp(raw_end) if raw_end else None,
                )

            if reached_older:
                break
            next_url = next_page_link(page)
            if next_url and self._page_delay > 0:
                await asyncio.sleep(self._page_delay)

        logger.debug("run_search_complete", workflow=str(ref), pages=pages)

    async def collect(
        self,
        ref: WorkflowReference,
        start_time: datetime,
        end_time: datetime,
        status_filter: Collection[RunStatus] = frozenset(),
    ) -> list[WorkflowRun]:
        """Materialize search() into a list."""
        return [run async for run in self.search(ref, start_time, end_time, status_filter)]
