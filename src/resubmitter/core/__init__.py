# src/resubmitter/core/__init__.py
"""Core infrastructure: configuration, logging, cancellation."""

from resubmitter.core.cancellation import CancellationToken
from resubmitter.core.config import (
    BatchSettings,
    HttpSettings,
    ResubmitterSettings,
    RetrySettings,
    load_settings,
)
from resubmitter.core.logging import configure_logging, get_logger

__all__ = [
    "BatchSettings",
    "CancellationToken",
    "HttpSettings",
    "ResubmitterSettings",
    "RetrySettings",
    "configure_logging",
    "get_logger",
    "load_settings",
]
