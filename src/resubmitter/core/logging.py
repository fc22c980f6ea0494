# src/resubmitter/core/logging.py
"""Log setup for the resubmitter CLI.

Every record, whether emitted through structlog or through a plain
``logging.getLogger`` (the Azure SDK, httpx), is rendered by one
structlog pipeline and written to stderr. Stdout carries nothing but
command output, so ``resubmitter search ... > runs.txt`` stays clean.

Two renderings: key/value console lines for people, and one JSON object
per line (``--json-logs``) for log shippers.

Signed callback and payload URLs hold a SAS signature in their query
string. Any logged value that looks like one has its query dropped
before rendering.
"""

import logging
import sys
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import structlog
from structlog.stdlib import ProcessorFormatter

# Libraries that log every HTTP exchange or token fetch. Kept at WARNING
# or above regardless of --verbose.
_NOISY_LOGGERS: tuple[str, ...] = (
    "azure",
    "azure.core",
    "azure.core.pipeline",
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.identity",
    "msal",
    "httpx",
    "httpcore",
)

# Query parameters that mark a URL as carrying a SAS signature
_SIGNATURE_MARKERS: tuple[str, ...] = ("sig=", "signature=")


def _strip_signature(value: str) -> str:
    if not value.startswith(("http://", "https://")):
        return value
    parts = urlsplit(value)
    if not any(marker in parts.query.lower() for marker in _SIGNATURE_MARKERS):
        return value
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def _redact_signed_urls(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _strip_signature(value)
    return event_dict


def _drop_formatter_keys(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    # Added by ProcessorFormatter for its own use
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
) -> None:
    """Route all logging to stderr through structlog.

    Safe to call more than once; each call replaces the root handler.

    Args:
        json_output: One JSON object per line instead of console output.
        level: Root level name; the CLI passes DEBUG for --verbose.
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        _redact_signed_urls,
    ]

    if json_output:
        final_processors: list[Any] = [
            _drop_formatter_keys,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            _drop_formatter_keys,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests reconfigure between cases
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(log_level)

    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """structlog logger for ``name``, typed for mypy."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
