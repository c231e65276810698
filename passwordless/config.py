from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from passwordless.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ACCESS_TOKEN_KEY = "@access_token"


class CredentialStoreBackend(str, Enum):
    """Where the session credential is kept."""

    FILE = "file"
    MEMORY = "memory"


def _default_store_dir() -> str:
    return str(Path.home() / ".passwordless")


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the identity provider and the credential store."""

    aws_region: str = env_field("us-east-1", "AWS_REGION")
    user_pool_client_id: str | None = env_field(
        None,
        "USER_POOL_CLIENT_ID",
        description="App client ID of the user pool (no client secret)",
    )
    provider_endpoint: str | None = env_field(
        None,
        "IDENTITY_PROVIDER_ENDPOINT",
        description="Override the regional identity provider URL, e.g. for a local emulator",
    )
    provider_timeout_seconds: float | None = env_field(
        None,
        "IDENTITY_PROVIDER_TIMEOUT",
        description="Per-request timeout; unset keeps the HTTP client's default",
    )
    credential_store_backend: CredentialStoreBackend = env_field(
        CredentialStoreBackend.FILE, "CREDENTIAL_STORE_BACKEND"
    )
    credential_store_dir: str = env_field(_default_store_dir(), "CREDENTIAL_STORE_DIR")
    access_token_key: str = env_field(DEFAULT_ACCESS_TOKEN_KEY, "ACCESS_TOKEN_KEY")
    credential_encryption_key: str | None = env_field(
        None,
        "CREDENTIAL_ENCRYPTION_KEY",
        description="Key material for encrypting stored credentials; generated on first use when unset",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("aws_region")
    @classmethod
    def _normalize_region(cls, value: str) -> str:
        region = (value or "").strip().lower()
        if not region:
            raise ValueError("aws_region must not be empty")
        return region

    @field_validator("credential_store_backend", mode="before")
    @classmethod
    def _validate_backend(cls, value: Any) -> CredentialStoreBackend:
        if isinstance(value, str):
            value = value.strip().lower()
        return CredentialStoreBackend(value)

    @field_validator("provider_endpoint", "user_pool_client_id", "credential_encryption_key")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("access_token_key")
    @classmethod
    def _ensure_token_key(cls, value: str) -> str:
        if not value or not value.strip():
            logger.warning("access_token_key_blank", fallback=DEFAULT_ACCESS_TOKEN_KEY)
            return DEFAULT_ACCESS_TOKEN_KEY
        return value.strip()

    @property
    def provider_url(self) -> str:
        """Endpoint that receives the JSON-RPC style provider calls."""
        if self.provider_endpoint:
            return self.provider_endpoint.rstrip("/") + "/"
        return f"https://cognito-idp.{self.aws_region}.amazonaws.com/"


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
