# src/resubmitter/clients/auth.py
"""Azure credential configuration and bearer token providers.

Supports four authentication methods (mutually exclusive):
1. Access token - A pre-acquired bearer token (CI, scripting, tests)
2. Managed Identity / DefaultAzureCredential - For Azure-hosted workloads
3. Service Principal - For automated scenarios
4. Interactive browser - Opens the system browser to sign in (default)

IMPORTANT: This module handles credentials. Tokens and client secrets should
be passed via environment variables, not hardcoded in configuration files.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol, Self, cast, runtime_checkable

from pydantic import BaseModel, model_validator

from resubmitter.contracts.errors import NotAuthenticatedError

if TYPE_CHECKING:
    from azure.core.credentials import TokenCredential

MANAGEMENT_SCOPE = "https://management.azure.com/.default"


@runtime_checkable
class TokenProvider(Protocol):
    """Supplies a bearer credential on demand.

    Called before every authenticated request; implementations are expected
    to cache and refresh tokens themselves.
    """

    async def get_token(self, scope: str = MANAGEMENT_SCOPE) -> str:
        """Return a bearer token for ``scope``.

        Raises:
            NotAuthenticatedError: If no credential is available.
        """
        ...


class StaticTokenProvider:
    """Token provider returning a fixed, pre-acquired token."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    async def get_token(self, scope: str = MANAGEMENT_SCOPE) -> str:
        if not self._token:
            raise NotAuthenticatedError("Not authenticated. Please sign in first.")
        return self._token


class CredentialTokenProvider:
    """Token provider backed by a synchronous azure-identity credential.

    azure-identity credentials block (interactive sign-in, MSAL cache, IMDS),
    so acquisition runs in a worker thread to keep the event loop free.
    """

    def __init__(self, credential: TokenCredential | None) -> None:
        self._credential = credential

    def sign_out(self) -> None:
        """Forget the credential; subsequent calls raise NotAuthenticatedError."""
        self._credential = None

    @property
    def is_signed_in(self) -> bool:
        return self._credential is not None

    async def get_token(self, scope: str = MANAGEMENT_SCOPE) -> str:
        if self._credential is None:
            raise NotAuthenticatedError("Not authenticated. Please sign in first.")

        from azure.core.exceptions import ClientAuthenticationError

        try:
            access_token = await asyncio.to_thread(self._credential.get_token, scope)
        except ClientAuthenticationError as e:
            raise NotAuthenticatedError(f"Failed to obtain access token: {e.message}") from e
        if not access_token or not access_token.token:
            raise NotAuthenticatedError("Failed to obtain access token")
        return access_token.token


class AzureAuthConfig(BaseModel):
    """Azure authentication configuration.

    Supports four methods (mutually exclusive):
    1. access_token - Static bearer token
    2. use_managed_identity - DefaultAzureCredential (managed identity, az CLI, env)
    3. tenant_id + client_id + client_secret - Service Principal
    4. interactive (+ optional tenant_id) - Browser sign-in

    When nothing is configured, interactive sign-in is used.

    Example configurations:

        # Option 1: Static token
        access_token: "${AZURE_ACCESS_TOKEN}"

        # Option 2: Managed Identity
        use_managed_identity: true

        # Option 3: Service Principal
        tenant_id: "${AZURE_TENANT_ID}"
        client_id: "${AZURE_CLIENT_ID}"
        client_secret: "${AZURE_CLIENT_SECRET}"

        # Option 4: Interactive, pinned to a tenant
        interactive: true
        tenant_id: "${AZURE_TENANT_ID}"
    """

    model_config = {"extra": "forbid", "frozen": True}

    access_token: str | None = None
    use_managed_identity: bool = False
    interactive: bool = False

    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None

    @model_validator(mode="after")
    def validate_auth_method(self) -> Self:
        """Ensure at most one auth method is configured.

        Raises:
            ValueError: If multiple methods are configured, or a service
                principal is only partially configured.
        """
        sp_fields = {
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        has_client_credentials = self._is_set(self.client_id) or self._is_set(self.client_secret)
        if has_client_credentials:
            missing = [name for name, value in sp_fields.items() if not self._is_set(value)]
            if missing:
                raise ValueError(f"Service Principal auth requires all fields. Missing: {', '.join(missing)}")

        methods = [
            self._is_set(self.access_token),
            self.use_managed_identity,
            has_client_credentials,
            self.interactive,
        ]
        if sum(methods) > 1:
            raise ValueError(
                "Multiple authentication methods configured. Provide at most one of: "
                "access_token, "
                "use_managed_identity, "
                "service principal (tenant_id + client_id + client_secret), or "
                "interactive (+ optional tenant_id)"
            )
        return self

    def _is_set(self, value: str | None) -> bool:
        """Whitespace-only strings are treated as unset."""
        return value is not None and bool(value.strip())

    @property
    def auth_method(self) -> str:
        """Return the active method: 'access_token', 'managed_identity', 'service_principal' or 'interactive'."""
        if self._is_set(self.access_token):
            return "access_token"
        if self.use_managed_identity:
            return "managed_identity"
        if self._is_set(self.client_id):
            return "service_principal"
        return "interactive"

    def create_token_provider(self) -> TokenProvider:
        """Create a token provider for the configured method.

        Raises:
            ImportError: If azure-identity is needed but not installed.
        """
        if self.auth_method == "access_token":
            return StaticTokenProvider(self.access_token)

        try:
            from azure.identity import (
                ClientSecretCredential,
                DefaultAzureCredential,
                InteractiveBrowserCredential,
            )
        except ImportError as e:
            raise ImportError("azure-identity is required for Azure sign-in. Install with: uv pip install azure-identity") from e

        credential: TokenCredential
        if self.auth_method == "managed_identity":
            credential = DefaultAzureCredential()
        elif self.auth_method == "service_principal":
            # model_validator guarantees all service principal fields are set in this branch
            credential = ClientSecretCredential(
                tenant_id=cast(str, self.tenant_id),
                client_id=cast(str, self.client_id),
                client_secret=cast(str, self.client_secret),
            )
        else:
            tenant_id = self.tenant_id if self._is_set(self.tenant_id) else None
            credential = InteractiveBrowserCredential(tenant_id=tenant_id) if tenant_id else InteractiveBrowserCredential()
        return CredentialTokenProvider(credential)
