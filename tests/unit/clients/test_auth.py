"""Tests for Azure authentication configuration and token providers."""

from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError
from pydantic import ValidationError

from resubmitter.clients.auth import (
    MANAGEMENT_SCOPE,
    AzureAuthConfig,
    CredentialTokenProvider,
    StaticTokenProvider,
    TokenProvider,
)
from resubmitter.contracts import NotAuthenticatedError


class TestAzureAuthConfig:
    """Tests for auth method selection and validation."""

    def test_default_is_interactive(self) -> None:
        assert AzureAuthConfig().auth_method == "interactive"

    def test_access_token(self) -> None:
        assert AzureAuthConfig(access_token="tok").auth_method == "access_token"

    def test_managed_identity(self) -> None:
        assert AzureAuthConfig(use_managed_identity=True).auth_method == "managed_identity"

    def test_service_principal(self) -> None:
        config = AzureAuthConfig(tenant_id="t", client_id="c", client_secret="s")

        assert config.auth_method == "service_principal"

    def test_partial_service_principal_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Missing: client_secret"):
            AzureAuthConfig(tenant_id="t", client_id="c")

    def test_multiple_methods_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Multiple authentication methods"):
            AzureAuthConfig(access_token="tok", use_managed_identity=True)

    def test_interactive_with_tenant_is_allowed(self) -> None:
        config = AzureAuthConfig(interactive=True, tenant_id="t")

        assert config.auth_method == "interactive"

    def test_whitespace_token_is_unset(self) -> None:
        assert AzureAuthConfig(access_token="   ").auth_method == "interactive"

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValidationError):
            AzureAuthConfig(password="hunter2")  # type: ignore[call-arg]

    def test_create_static_provider(self) -> None:
        provider = AzureAuthConfig(access_token="tok").create_token_provider()

        assert isinstance(provider, StaticTokenProvider)
        assert isinstance(provider, TokenProvider)

    def test_create_service_principal_provider(self) -> None:
        config = AzureAuthConfig(tenant_id="t", client_id="c", client_secret="s")

        with patch("azure.identity.ClientSecretCredential") as credential_cls:
            provider = config.create_token_provider()

        credential_cls.assert_called_once_with(tenant_id="t", client_id="c", client_secret="s")
        assert isinstance(provider, CredentialTokenProvider)

    def test_create_managed_identity_provider(self) -> None:
        with patch("azure.identity.DefaultAzureCredential") as credential_cls:
            provider = AzureAuthConfig(use_managed_identity=True).create_token_provider()

        credential_cls.assert_called_once_with()
        assert provider.is_signed_in  # type: ignore[attr-defined]

    def test_create_interactive_provider_pins_tenant(self) -> None:
        with patch("azure.identity.InteractiveBrowserCredential") as credential_cls:
            AzureAuthConfig(interactive=True, tenant_id="t").create_token_provider()

        credential_cls.assert_called_once_with(tenant_id="t")


class TestStaticTokenProvider:
    @pytest.mark.asyncio
    async def test_returns_token(self) -> None:
        assert await StaticTokenProvider("tok").get_token() == "tok"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token_not_authenticated(self, token: str | None) -> None:
        with pytest.raises(NotAuthenticatedError):
            await StaticTokenProvider(token).get_token()


class TestCredentialTokenProvider:
    """Tests for the azure-identity credential adapter."""

    def _credential(self, **kwargs: Any) -> MagicMock:
        credential = MagicMock()
        credential.get_token.configure_mock(**kwargs)
        return credential

    @pytest.mark.asyncio
    async def test_requests_management_scope(self) -> None:
        credential = self._credential(return_value=AccessToken("bearer-1", 9999999999))

        token = await CredentialTokenProvider(credential).get_token()

        assert token == "bearer-1"
        credential.get_token.assert_called_once_with(MANAGEMENT_SCOPE)

    @pytest.mark.asyncio
    async def test_authentication_failure_is_not_authenticated(self) -> None:
        credential = self._credential(side_effect=ClientAuthenticationError(message="consent required"))

        with pytest.raises(NotAuthenticatedError, match="consent required"):
            await CredentialTokenProvider(credential).get_token()

    @pytest.mark.asyncio
    async def test_sign_out(self) -> None:
        provider = CredentialTokenProvider(self._credential(return_value=AccessToken("bearer-1", 0)))

        provider.sign_out()

        assert provider.is_signed_in is False
        with pytest.raises(NotAuthenticatedError):
            await provider.get_token()
