# src/resubmitter/clients/__init__.py
"""Remote collaborators: token providers and the management API client."""

from resubmitter.clients.auth import (
    MANAGEMENT_SCOPE,
    AzureAuthConfig,
    CredentialTokenProvider,
    StaticTokenProvider,
    TokenProvider,
)
from resubmitter.clients.management import ManagementClient, parse_retry_after, redact_url

__all__ = [
    "MANAGEMENT_SCOPE",
    "AzureAuthConfig",
    "CredentialTokenProvider",
    "ManagementClient",
    "StaticTokenProvider",
    "TokenProvider",
    "parse_retry_after",
    "redact_url",
]
