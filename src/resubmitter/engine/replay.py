# src/resubmitter/engine/replay.py
"""Reconstruct a replay request from a captured trigger payload envelope.

The envelope is the JSON stored behind a trigger history's inputs/outputs
link, e.g.:

    {
        "method": "POST",
        "relativePath": "/orders/42",
        "queries": {"source": "erp"},
        "headers": {"Content-Type": "application/xml"},
        "body": {"$content": "<a/>", "$content-type": "application/xml"}
    }

Bodies stored out-of-line come wrapped as {"$content": ..., "$content-type": ...}.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx

DEFAULT_METHOD = "POST"
DEFAULT_CONTENT_TYPE = "application/json"

_CONTENT_KEY = "$content"
_CONTENT_TYPE_KEY = "$content-type"


@dataclass(frozen=True, slots=True)
class ReplayRequest:
    """A fully derived replay call against a signed callback URL."""

    method: str
    url: str
    content_type: str
    content: bytes | None


def _header(headers: dict[str, Any], name: str) -> str | None:
    """Case-insensitive header lookup."""
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered and value is not None:
            return str(value)
    return None


def _unwrap_body(body: Any) -> tuple[Any, str | None]:
    """Unwrap a content-reference wrapper; returns (body, wrapper content type)."""
    if isinstance(body, dict) and _CONTENT_KEY in body:
        wrapped_type = body.get(_CONTENT_TYPE_KEY)
        return body[_CONTENT_KEY], str(wrapped_type) if wrapped_type else None
    return body, None


def _encode_body(body: Any) -> bytes | None:
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body, separators=(",", ":")).encode("utf-8")


def _target_url(callback_url: str, relative_path: str | None, queries: Any) -> str:
    """Append relative_path to the callback path, keeping the signed query intact."""
    url = httpx.URL(callback_url)
    if relative_path and relative_path.strip("/"):
        path = url.path.rstrip("/") + "/" + relative_path.strip().lstrip("/")
        url = url.copy_with(path=path)
    if isinstance(queries, dict) and queries:
        existing = set(url.params.keys())
        extra = {str(k): str(v) for k, v in queries.items() if str(k) not in existing and v is not None}
        if extra:
            url = url.copy_merge_params(extra)
    return str(url)


def build_replay_request(callback_url: str, envelope: dict[str, Any]) -> ReplayRequest:
    """Derive method, URL, content type and body from a captured envelope.

    Args:
        callback_url: Signed trigger callback URL (carries its own SAS query)
        envelope: Captured trigger payload envelope

    Returns:
        ReplayRequest ready to send without a bearer header
    """
    method = str(envelope.get("method") or DEFAULT_METHOD).upper()
    headers = envelope.get("headers") or {}
    body, wrapped_type = _unwrap_body(envelope.get("body"))
    content_type = _header(headers, "Content-Type") or wrapped_type or DEFAULT_CONTENT_TYPE

    return ReplayRequest(
        method=method,
        url=_target_url(callback_url, envelope.get("relativePath"), envelope.get("queries")),
        content_type=content_type,
        content=_encode_body(body),
    )
