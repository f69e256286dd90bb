"""
permissions_sdk.tier1_runtime.validate
───────────────────────────────────────
Structural validation of a fetched policy document. Checks run in order and
stop at the first failure:

  1. root is an object holding a ``roles`` object   → MALFORMED_ROOT
  2. each role has ``sections`` (list) and boolean ``own_records_only``
  3. each section has non-empty name/url, boolean can_read/can_write,
     and a url unique within its role

Missing keys raise MISSING_FIELD with a dotted path; present-but-wrong values
raise MALFORMED_ROLE; repeated urls raise DUPLICATE_SECTION_URL. Validation is
all-or-nothing: one bad role rejects the whole document.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from permissions_sdk.tier0_core.errors import (
    Err,
    Ok,
    PolicyValidationError,
    Result,
    ValidationErrorKind,
)
from permissions_sdk.tier1_runtime.schemas import PolicyDocument, RolePolicy, Section

_ROLE_FIELDS = ("sections", "own_records_only")
_SECTION_FIELDS = ("name", "url", "can_read", "can_write")


class PolicyValidator:
    """Turns an untyped payload into a PolicyDocument or raises PolicyValidationError."""

    def validate(self, raw: Any) -> PolicyDocument:
        root = self._root(raw)
        roles: dict[str, RolePolicy] = {}
        for role_name, role_raw in root["roles"].items():
            if not isinstance(role_name, str) or not role_name:
                raise _malformed_root(f"role names must be non-empty strings, got {role_name!r}")
            roles[role_name] = self._role(role_name, role_raw)
        version = root.get("version")
        return PolicyDocument(
            roles=roles,
            version=version if isinstance(version, str) else None,
        )

    # ── Step 1 ────────────────────────────────────────────────────────────────

    def _root(self, raw: Any) -> Mapping[str, Any]:
        if isinstance(raw, (bytes, bytearray, str)):
            try:
                raw = json.loads(raw)
            except (ValueError, RecursionError) as exc:
                raise _malformed_root(f"policy body is not JSON: {exc}") from exc

        if not isinstance(raw, Mapping):
            raise _malformed_root(
                f"policy root must be an object, got {type(raw).__name__}"
            )

        if not isinstance(raw.get("roles"), Mapping):
            raise _malformed_root("policy root must hold a 'roles' object")
        return raw

    # ── Step 2 ────────────────────────────────────────────────────────────────

    def _role(self, role: str, raw: Any) -> RolePolicy:
        if not isinstance(raw, Mapping):
            raise _malformed_role(role, f"roles.{role}", "role policy must be an object")

        for field in _ROLE_FIELDS:
            if field not in raw:
                raise _missing(role, f"roles.{role}.{field}")

        sections_raw = raw["sections"]
        if not isinstance(sections_raw, list):
            raise _malformed_role(role, f"roles.{role}.sections", "sections must be a list")
        if not isinstance(raw["own_records_only"], bool):
            raise _malformed_role(
                role, f"roles.{role}.own_records_only", "own_records_only must be a boolean"
            )

        # ── Step 3 ────────────────────────────────────────────────────────────
        sections: list[Section] = []
        seen: set[str] = set()
        for index, section_raw in enumerate(sections_raw):
            section = self._section(role, index, section_raw)
            if section.url in seen:
                raise PolicyValidationError(
                    ValidationErrorKind.DUPLICATE_SECTION_URL,
                    f"role {role!r} lists section url {section.url!r} more than once",
                    role=role,
                    url=section.url,
                    path=f"roles.{role}.sections.{index}.url",
                )
            seen.add(section.url)
            sections.append(section)

        return RolePolicy(own_records_only=raw["own_records_only"], sections=tuple(sections))

    def _section(self, role: str, index: int, raw: Any) -> Section:
        path = f"roles.{role}.sections.{index}"
        if not isinstance(raw, Mapping):
            raise _malformed_role(role, path, "section must be an object")

        for field in _SECTION_FIELDS:
            if field not in raw:
                raise _missing(role, f"{path}.{field}")

        try:
            return Section.model_validate(dict(raw))
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            loc = ".".join(str(part) for part in first["loc"])
            raise _malformed_role(role, f"{path}.{loc}", first["msg"]) from exc


# ── Error constructors ────────────────────────────────────────────────────────

def _malformed_root(detail: str) -> PolicyValidationError:
    return PolicyValidationError(ValidationErrorKind.MALFORMED_ROOT, detail)


def _malformed_role(role: str, path: str, detail: str) -> PolicyValidationError:
    return PolicyValidationError(
        ValidationErrorKind.MALFORMED_ROLE,
        f"role {role!r} is malformed at {path}: {detail}",
        role=role,
        path=path,
    )


def _missing(role: str, path: str) -> PolicyValidationError:
    return PolicyValidationError(
        ValidationErrorKind.MISSING_FIELD,
        f"required field {path} is missing",
        role=role,
        path=path,
    )


# ── Public API ────────────────────────────────────────────────────────────────

_validator = PolicyValidator()


def validate_policy(raw: Any) -> Result[PolicyDocument]:
    """Validate *raw* and return Ok(document) or Err(PolicyValidationError)."""
    try:
        return Ok(_validator.validate(raw))
    except PolicyValidationError as exc:
        return Err(exc)


__all__ = ["PolicyValidator", "validate_policy"]
