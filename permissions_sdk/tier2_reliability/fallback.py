"""
permissions_sdk.tier2_reliability.fallback
───────────────────────────────────────────
Built-in safety policy used when the remote document cannot be fetched or
fails validation. The document is fixed and versioned; every use of it is
marked degraded so callers can tell live policy from fallback policy.

Substitution is a pure function of the fetch/validate Result: an Ok passes
through untouched, an Err is replaced by the default document.
"""
from __future__ import annotations

from typing import Any

from permissions_sdk.tier0_core.errors import Err, Ok, Result
from permissions_sdk.tier1_runtime.schemas import PolicyDocument
from permissions_sdk.tier1_runtime.validate import PolicyValidator

FALLBACK_POLICY_VERSION = "builtin-2025.1"


def _rw(name: str, url: str) -> dict[str, Any]:
    return {"name": name, "url": url, "can_read": True, "can_write": True}


def _ro(name: str, url: str) -> dict[str, Any]:
    return {"name": name, "url": url, "can_read": True, "can_write": False}


# Employee sees audiences/instruments with write access and none of the
# admin-only sections; labels and grants kept as shipped.
_FALLBACK_WIRE: dict[str, Any] = {
    "version": FALLBACK_POLICY_VERSION,
    "roles": {
        "admin": {
            "own_records_only": False,
            "sections": [
                _rw("Расписание", "/schedules"),
                _rw("Занятия", "/lessons"),
                _rw("Сотрудники", "/employees"),
                _rw("Аудитория", "/audiences"),
                _rw("Инструмент", "/instruments"),
                _rw("Пользователь", "/users"),
                _rw("Ученики", "/students"),
                _rw("Группы", "/study-groups"),
                _rw("Оценки", "/assessments"),
                _rw("Посещение", "/attendances"),
                _rw("Программа", "/programms"),
            ],
        },
        "teacher": {
            "own_records_only": True,
            "sections": [
                _rw("Оценки", "/assessments"),
                _rw("Посещение", "/attendances"),
            ],
        },
        "student": {
            "own_records_only": True,
            "sections": [
                _ro("Оценки", "/assessments"),
                _ro("Посещение", "/attendances"),
                _ro("Инструмент", "/instruments"),
            ],
        },
        "employee": {
            "own_records_only": False,
            "sections": [
                _rw("Аудитория", "/audiences"),
                _rw("Инструмент", "/instruments"),
            ],
        },
    },
}

_DEFAULT_DOCUMENT = PolicyValidator().validate(_FALLBACK_WIRE)


class FallbackPolicyProvider:
    """Holds the versioned default document. No I/O."""

    version = FALLBACK_POLICY_VERSION

    def get_default(self) -> PolicyDocument:
        return _DEFAULT_DOCUMENT


def get_default() -> PolicyDocument:
    """Return the built-in fallback document (same instance on every call)."""
    return _DEFAULT_DOCUMENT


def substitute(
    result: Result[PolicyDocument],
    provider: FallbackPolicyProvider | None = None,
) -> tuple[PolicyDocument, bool]:
    """
    Pick the winning document for a fetch/validate outcome.

    Returns (document, degraded). degraded is True exactly when the
    fallback document replaced a failed result.
    """
    if isinstance(result, Ok):
        return result.value, False
    if isinstance(result, Err):
        return (provider or FallbackPolicyProvider()).get_default(), True
    raise TypeError(f"expected Ok or Err, got {type(result).__name__}")


__all__ = [
    "FALLBACK_POLICY_VERSION",
    "FallbackPolicyProvider",
    "get_default",
    "substitute",
]
