"""
permissions_sdk.tier0_core.errors
──────────────────────────────────
Error taxonomy for policy resolution, plus the Ok/Err result values the
resolver threads through its pipeline instead of catch-driven control flow.

FetchError and PolicyValidationError are recoverable: the resolver converts
them into fallback substitution and they never reach resolve() callers.
Errors are optionally reported to Sentry.

Select via:    PERMISSIONS_ERROR_BACKEND=sentry|none
"""
from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


# ── Base error ────────────────────────────────────────────────────────────────

class PermissionsError(Exception):
    """
    Base class for all SDK errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - user_message: safe to surface to end users
    - detail: internal context, never shown to users
    """

    code: str = "permissions_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "An unexpected error occurred.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)
        _capture(self)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
            }
        }


# ── Transport errors ──────────────────────────────────────────────────────────

class FetchErrorKind(str, enum.Enum):
    UNREACHABLE = "unreachable"
    HTTP_STATUS = "http_status"
    TIMEOUT = "timeout"


class FetchError(PermissionsError):
    """The policy source could not deliver a document."""
    code = "policy_fetch_failed"

    def __init__(
        self,
        kind: FetchErrorKind,
        detail: str | None = None,
        status_code: int | None = None,
        **metadata: Any,
    ) -> None:
        self.kind = FetchErrorKind(kind)
        self.status_code = status_code
        if detail is None:
            detail = (
                f"policy source returned HTTP {status_code}"
                if self.kind is FetchErrorKind.HTTP_STATUS
                else f"policy source {self.kind.value}"
            )
        super().__init__(
            None,
            "Permissions could not be loaded.",
            detail,
            **metadata,
        )

    @property
    def retryable(self) -> bool:
        if self.kind is FetchErrorKind.HTTP_STATUS:
            return self.status_code is not None and self.status_code >= 500
        return True

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["error"]["kind"] = self.kind.value
        if self.status_code is not None:
            d["error"]["status_code"] = self.status_code
        return d


# ── Data-integrity errors ─────────────────────────────────────────────────────

class ValidationErrorKind(str, enum.Enum):
    MALFORMED_ROOT = "malformed_root"
    MALFORMED_ROLE = "malformed_role"
    DUPLICATE_SECTION_URL = "duplicate_section_url"
    MISSING_FIELD = "missing_field"


class PolicyValidationError(PermissionsError):
    """A fetched policy document failed structural validation."""
    code = "policy_invalid"

    def __init__(
        self,
        kind: ValidationErrorKind,
        detail: str,
        *,
        role: str | None = None,
        url: str | None = None,
        path: str | None = None,
    ) -> None:
        self.kind = ValidationErrorKind(kind)
        self.role = role
        self.url = url
        self.path = path
        super().__init__(None, "Permissions document is invalid.", detail)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["error"]["kind"] = self.kind.value
        for key in ("role", "url", "path"):
            value = getattr(self, key)
            if value is not None:
                d["error"][key] = value
        return d


class ConfigurationError(PermissionsError):
    """Misconfiguration detected at startup."""
    code = "configuration_error"


# ── Result values ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: FetchError | PolicyValidationError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


# ── Error capture backend ─────────────────────────────────────────────────────

def _capture(error: PermissionsError) -> None:
    """Send error to the configured backend. Called by PermissionsError.__init__."""
    backend = os.getenv("PERMISSIONS_ERROR_BACKEND", "none").lower()
    if backend == "sentry":
        _capture_sentry(error)


def _capture_sentry(error: PermissionsError) -> None:
    try:
        import sentry_sdk
    except ImportError:
        return
    sentry_sdk.capture_message(
        str(error),
        level="warning",
        extras={"code": error.code, **error.metadata},
    )


def configure_sentry(dsn: str, **kwargs: Any) -> None:
    """Initialize Sentry. Call once at application startup."""
    import sentry_sdk
    sentry_sdk.init(dsn=dsn, **kwargs)
    os.environ["PERMISSIONS_ERROR_BACKEND"] = "sentry"


__all__ = [
    "PermissionsError",
    "FetchError",
    "FetchErrorKind",
    "PolicyValidationError",
    "ValidationErrorKind",
    "ConfigurationError",
    "Ok",
    "Err",
    "Result",
    "configure_sentry",
]
