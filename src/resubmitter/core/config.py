# src/resubmitter/core/config.py
"""
Configuration schema and loading for resubmitter.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from resubmitter.clients.auth import AzureAuthConfig


class HttpSettings(BaseModel):
    """Endpoints and timeouts for remote calls."""

    model_config = {"frozen": True}

    management_endpoint: str = Field(
        default="https://management.azure.com",
        description="Azure Resource Manager endpoint (override for sovereign clouds)",
    )
    management_timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout for authenticated management calls")
    payload_timeout_seconds: float = Field(default=30.0, gt=0, description="Timeout for fetching signed trigger payloads")
    replay_timeout_seconds: float = Field(default=120.0, gt=0, description="Timeout for replay calls to trigger callback URLs")


class RetrySettings(BaseModel):
    """Retry behavior per error classification.

    Rate-limited calls are retried without limit; permanent and transient
    failures give up after their max_attempts.
    """

    model_config = {"frozen": True}

    base_delay_seconds: float = Field(default=1.0, gt=0, description="Initial backoff delay")
    rate_limit_max_delay_seconds: float = Field(default=300.0, gt=0, description="Backoff cap for rate-limited calls")
    permanent_max_attempts: int = Field(default=5, gt=0, description="Attempts before giving up on 4xx errors")
    permanent_max_delay_seconds: float = Field(default=10.0, gt=0, description="Backoff cap for 4xx errors")
    transient_max_attempts: int | None = Field(
        default=5,
        gt=0,
        description="Attempts before giving up on 5xx/network errors (null = retry forever)",
    )
    transient_max_delay_seconds: float = Field(default=60.0, gt=0, description="Backoff cap for 5xx/network errors")


class BatchSettings(BaseModel):
    """Batch scheduling configuration."""

    model_config = {"frozen": True}

    concurrency: int = Field(default=10, gt=0, description="Runs in flight per batch chunk (parallel mode)")
    page_delay_seconds: float = Field(default=0.3, ge=0, description="Pause between listing pages")


class ResubmitterSettings(BaseModel):
    """Top-level configuration.

    Example YAML:
        auth:
          tenant_id: "${AZURE_TENANT_ID:-}"
          interactive: true
        batch:
          concurrency: 5
        retry:
          transient_max_attempts: 8
    """

    model_config = {"frozen": True}

    auth: AzureAuthConfig = Field(default_factory=AzureAuthConfig, description="Credential used for management calls")
    http: HttpSettings = Field(default_factory=HttpSettings, description="Endpoints and timeouts")
    retry: RetrySettings = Field(default_factory=RetrySettings, description="Retry behavior")
    batch: BatchSettings = Field(default_factory=BatchSettings, description="Batch scheduling")

    @model_validator(mode="after")
    def validate_endpoint_scheme(self) -> "ResubmitterSettings":
        """Management calls carry bearer tokens and must never go over plain HTTP."""
        if not self.http.management_endpoint.startswith("https://"):
            raise ValueError(f"http.management_endpoint must use https, got '{self.http.management_endpoint}'")
        return self


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Unset variables without a default are left verbatim so validation
    reports them instead of silently receiving an empty string.
    """

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):

            def _replace(match: re.Match[str]) -> str:
                name, default = match.group(1), match.group(2)
                env_value = os.environ.get(name)
                if env_value is not None:
                    return env_value
                if default is not None:
                    return default
                return match.group(0)

            return _ENV_VAR_PATTERN.sub(_replace, value)
        if isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_expand_value(v) for v in value]
        return value

    return {k: _expand_value(v) for k, v in config.items()}


def load_settings(config_path: Path | None = None) -> ResubmitterSettings:
    """Load settings from an optional YAML file with environment overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (RESUBMITTER_*) - highest priority
    2. Config file, if given
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: RESUBMITTER_BATCH__CONCURRENCY for nested keys.

    Args:
        config_path: Path to YAML configuration file, or None for env-only

    Returns:
        Validated ResubmitterSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If an explicit config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="RESUBMITTER",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; lower them for Pydantic and drop its internals
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = {k: _lower_keys(v) for k, v in raw_config.items()}

    raw_config = _expand_env_vars(raw_config)

    return ResubmitterSettings(**raw_config)


def _lower_keys(value: Any) -> Any:
    """Lowercase nested dict keys (env overrides arrive uppercased)."""
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value
