# src/resubmitter/clients/management.py
"""HTTP client for the Logic Apps Standard management API.

Two kinds of calls go through this client:

- Authenticated management calls (bearer token from a TokenProvider):
  run listing, run detail, trigger listing, callback URL, trigger
  histories and resubmit.
- Pre-authorized calls that must NOT carry a bearer header: fetching a
  signed inputs/outputs link and replaying a payload to a signed trigger
  callback URL. Both URLs carry their own SAS signature in the query.

Non-2xx responses and transport failures are mapped onto the tagged error
taxonomy in resubmitter.contracts.errors, so classification never has to
inspect raw HTTP objects.
"""

from __future__ import annotations

import json
import math
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from json import JSONDecodeError
from types import TracebackType
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlsplit, urlunsplit

import httpx
import structlog

from resubmitter.clients.auth import MANAGEMENT_SCOPE, TokenProvider
from resubmitter.contracts.errors import (
    PermanentError,
    RateLimitedError,
    TransientError,
)
from resubmitter.contracts.workflow import WorkflowReference

if TYPE_CHECKING:
    from resubmitter.core.config import HttpSettings

logger = structlog.get_logger(__name__)

RUNS_API_VERSION = "2022-03-01"
TRIGGERS_API_VERSION = "2018-11-01"

# Error bodies can be large HTML pages from gateways; keep messages readable.
_MAX_ERROR_BODY = 500


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header value into seconds.

    Accepts either delta-seconds ("3", "1.5") or an HTTP date
    ("Wed, 21 Oct 2015 07:28:00 GMT"). Dates in the past yield 0.

    Args:
        value: Raw header value, or None if the header was absent
        now: Reference time for HTTP dates (defaults to current UTC time)

    Returns:
        Delay in seconds (>= 0), or None if absent or unparseable
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            return None
        return max(0.0, seconds)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    reference = now or datetime.now(UTC)
    return max(0.0, (when - reference).total_seconds())


def redact_url(url: str | httpx.URL) -> str:
    """Strip the query string (which may hold a SAS signature) for logging."""
    parts = urlsplit(str(url))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def _segment(value: str) -> str:
    """Percent-encode a single path segment."""
    return quote(value, safe="")


class ManagementClient:
    """Async client for the Azure management API and signed trigger URLs.

    Wraps one shared httpx.AsyncClient for connection pooling. Per-call
    timeouts distinguish management calls (30s), signed payload fetches
    (30s) and replay calls (120s, target workflows may be slow).

    Example:
        async with ManagementClient(token_provider) as client:
            data = await client.get_json(f"{client.workflow_url(ref)}/runs?api-version=2022-03-01")
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        management_endpoint: str = "https://management.azure.com",
        management_timeout: float = 30.0,
        payload_timeout: float = 30.0,
        replay_timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            token_provider: Source of bearer tokens for management calls
            management_endpoint: ARM endpoint root
            management_timeout: Timeout in seconds for authenticated calls
            payload_timeout: Timeout in seconds for signed payload fetches
            replay_timeout: Timeout in seconds for replay calls
            transport: Optional httpx transport (tests)
        """
        self._token_provider = token_provider
        self._endpoint = management_endpoint.rstrip("/")
        self._management_timeout = management_timeout
        self._payload_timeout = payload_timeout
        self._replay_timeout = replay_timeout
        self._client = httpx.AsyncClient(
            timeout=management_timeout,
            follow_redirects=False,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, token_provider: TokenProvider, settings: HttpSettings) -> ManagementClient:
        """Build a client from HttpSettings."""
        return cls(
            token_provider,
            management_endpoint=settings.management_endpoint,
            management_timeout=settings.management_timeout_seconds,
            payload_timeout=settings.payload_timeout_seconds,
            replay_timeout=settings.replay_timeout_seconds,
        )

    async def __aenter__(self) -> ManagementClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client and release connections."""
        await self._client.aclose()

    # ── URL building ────────────────────────────────────────────────────────

    def site_url(self, ref: WorkflowReference) -> str:
        return (
            f"{self._endpoint}/subscriptions/{_segment(ref.subscription_id)}"
            f"/resourceGroups/{_segment(ref.resource_group)}"
            f"/providers/Microsoft.Web/sites/{_segment(ref.app_name)}"
        )

    def workflow_url(self, ref: WorkflowReference) -> str:
        return (
            f"{self.site_url(ref)}/hostruntime/runtime/webhooks/workflow/api/management"
            f"/workflows/{_segment(ref.workflow_name)}"
        )

    def runs_url(self, ref: WorkflowReference) -> str:
        return f"{self.workflow_url(ref)}/runs?api-version={RUNS_API_VERSION}"

    def run_url(self, ref: WorkflowReference, run_id: str) -> str:
        return f"{self.workflow_url(ref)}/runs/{_segment(run_id)}?api-version={RUNS_API_VERSION}"

    def triggers_url(self, ref: WorkflowReference) -> str:
        return f"{self.workflow_url(ref)}/triggers?api-version={TRIGGERS_API_VERSION}"

    def callback_url_endpoint(self, ref: WorkflowReference, trigger_name: str) -> str:
        return f"{self.workflow_url(ref)}/triggers/{_segment(trigger_name)}/listCallbackUrl?api-version={TRIGGERS_API_VERSION}"

    def histories_url(self, ref: WorkflowReference, trigger_name: str) -> str:
        return f"{self.workflow_url(ref)}/triggers/{_segment(trigger_name)}/histories?api-version={TRIGGERS_API_VERSION}"

    def history_url(self, ref: WorkflowReference, trigger_name: str, run_id: str) -> str:
        return (
            f"{self.workflow_url(ref)}/triggers/{_segment(trigger_name)}"
            f"/histories/{_segment(run_id)}?api-version={TRIGGERS_API_VERSION}"
        )

    def resubmit_url(self, ref: WorkflowReference, trigger_name: str, run_id: str) -> str:
        return (
            f"{self.workflow_url(ref)}/triggers/{_segment(trigger_name)}"
            f"/histories/{_segment(run_id)}/resubmit?api-version={TRIGGERS_API_VERSION}"
        )

    # ── Authenticated management calls ──────────────────────────────────────

    async def _auth_headers(self) -> dict[str, str]:
        token = await self._token_provider.get_token(MANAGEMENT_SCOPE)
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def get_json(self, url: str) -> Any:
        """GET a management URL and return the decoded JSON body.

        Raises:
            NotAuthenticatedError: If no token is available
            RateLimitedError / PermanentError / TransientError: On failure
        """
        headers = await self._auth_headers()
        response = await self._send("GET", url, headers=headers, timeout=self._management_timeout)
        return self._decode_json(response, url)

    async def post(self, url: str, json_body: Any = None) -> Any:
        """POST to a management URL. Bodyless when ``json_body`` is None.

        Returns:
            Decoded JSON body, or None for empty responses (e.g. 202 Accepted)
        """
        headers = await self._auth_headers()
        content = json.dumps(json_body).encode("utf-8") if json_body is not None else None
        response = await self._send("POST", url, headers=headers, content=content, timeout=self._management_timeout)
        if not response.content:
            return None
        return self._decode_json(response, url)

    # ── Pre-authorized calls (no bearer header) ─────────────────────────────

    async def fetch_signed_json(self, uri: str) -> Any:
        """Fetch JSON from a pre-signed link (trigger inputs/outputs content).

        Returns:
            Decoded JSON body, or None when the link serves no content
        """
        response = await self._send("GET", uri, headers={}, timeout=self._payload_timeout)
        if not response.content:
            return None
        return self._decode_json(response, uri)

    async def send_replay(
        self,
        method: str,
        url: str,
        *,
        content: bytes | None,
        content_type: str,
    ) -> httpx.Response:
        """Send a replay request to a signed trigger callback URL."""
        headers = {"Content-Type": content_type}
        return await self._send(method, url, headers=headers, content=content, timeout=self._replay_timeout)

    # ── Internals ───────────────────────────────────────────────────────────

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        timeout: float,
        content: bytes | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, headers=headers, content=content, timeout=timeout)
        except httpx.TimeoutException as e:
            raise TransientError(f"Request timed out after {timeout:g}s: {method} {redact_url(url)}") from e
        except httpx.TransportError as e:
            raise TransientError(f"Network error on {method} {redact_url(url)}: {e}") from e

        if response.is_success:
            return response

        self._raise_for_status(method, url, response)
        raise AssertionError("unreachable")  # pragma: no cover

    def _raise_for_status(self, method: str, url: str, response: httpx.Response) -> None:
        status = response.status_code
        body = response.text[:_MAX_ERROR_BODY]
        message = f"API call failed ({status}): {body}"

        logger.debug(
            "remote_call_failed",
            method=method,
            url=redact_url(url),
            status_code=status,
        )

        if status == 429:
            raise RateLimitedError(message, retry_after=parse_retry_after(response.headers.get("Retry-After")))
        if status < 500:
            raise PermanentError(message, status_code=status)
        raise TransientError(message, status_code=status)

    def _decode_json(self, response: httpx.Response, url: str) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except JSONDecodeError as e:
            # A 2xx with an unparseable body is a gateway or proxy hiccup, not a caller error
            raise TransientError(f"Invalid JSON from {redact_url(url)}: {e}") from e
