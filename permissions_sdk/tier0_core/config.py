"""
permissions_sdk.tier0_core.config
──────────────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic; invalid values raise
ConfigurationError when the config is first built, not mid-resolution.

Stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from permissions_sdk.tier0_core.errors import ConfigurationError


class PermissionsConfig(BaseSettings):
    """
    Typed SDK configuration. Env vars are prefixed with PERMISSIONS_ except
    the shared application fields.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ───────────────────────────────────────────────────────────
    app_name: str = Field(default="permissions", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")

    # ── Policy source ─────────────────────────────────────────────────────────
    source_backend: str = Field(default="http", alias="PERMISSIONS_SOURCE_BACKEND")
    policy_url: str = Field(
        default="http://localhost:8080/api/permissions/config",
        alias="PERMISSIONS_POLICY_URL",
    )
    policy_token: SecretStr | None = Field(default=None, alias="PERMISSIONS_POLICY_TOKEN")
    fetch_timeout: float = Field(default=5.0, gt=0, alias="PERMISSIONS_FETCH_TIMEOUT")
    fetch_attempts: int = Field(default=1, ge=1, alias="PERMISSIONS_FETCH_ATTEMPTS")

    # ── Cache ─────────────────────────────────────────────────────────────────
    cache_ttl: float = Field(default=300.0, ge=0, alias="PERMISSIONS_CACHE_TTL")
    degraded_ttl: float = Field(default=30.0, ge=0, alias="PERMISSIONS_DEGRADED_TTL")

    # ── Observability ─────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="PERMISSIONS_LOG_LEVEL")
    log_format: str = Field(default="json", alias="PERMISSIONS_LOG_FORMAT")
    metrics_enabled: bool = Field(default=True, alias="PERMISSIONS_METRICS_ENABLED")

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("source_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        allowed = {"http", "static"}
        if v.lower() not in allowed:
            raise ValueError(f"source backend must be one of {allowed}, got {v!r}")
        return v.lower()


@lru_cache(maxsize=1)
def get_config() -> PermissionsConfig:
    """
    Return the singleton SDK config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    try:
        return PermissionsConfig()
    except ValidationError as exc:
        raise ConfigurationError(
            user_message="Invalid permissions configuration.",
            detail=str(exc),
        ) from exc


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()
