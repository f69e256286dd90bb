"""
permissions_sdk.tier1_runtime.schemas
──────────────────────────────────────
Typed policy model. Untyped JSON never flows past the validator: everything
downstream of it works with these frozen Pydantic models.

Wire shape (GET <policy-endpoint>):

    {"roles": {"<role>": {"own_records_only": bool,
                          "sections": [{"name", "url", "can_read", "can_write"}]}}}
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Section(BaseModel):
    """A URL-addressed resource area with independent read/write grants."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(min_length=1, strict=True)
    url: str = Field(min_length=1, strict=True)
    can_read: bool = Field(strict=True)
    # can_write without can_read is kept as given
    can_write: bool = Field(strict=True)

    def to_wire(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "can_read": self.can_read,
            "can_write": self.can_write,
        }


class RolePolicy(BaseModel):
    """Grants for one role. ``sections`` is in display order."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    own_records_only: bool = Field(strict=True)
    sections: tuple[Section, ...] = ()

    @model_validator(mode="after")
    def _unique_urls(self) -> "RolePolicy":
        seen: set[str] = set()
        for section in self.sections:
            if section.url in seen:
                raise ValueError(f"duplicate section url {section.url!r}")
            seen.add(section.url)
        return self

    def to_wire(self) -> dict[str, Any]:
        return {
            "own_records_only": self.own_records_only,
            "sections": [s.to_wire() for s in self.sections],
        }


class PolicyDocument(BaseModel):
    """Role name → RolePolicy. A role resolves to exactly one policy or to None."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    roles: Mapping[str, RolePolicy]
    version: str | None = None

    @field_validator("roles", mode="after")
    @classmethod
    def _read_only(cls, v: Mapping[str, RolePolicy]) -> Mapping[str, RolePolicy]:
        return MappingProxyType(dict(v))

    def get(self, role: str) -> RolePolicy | None:
        return self.roles.get(role)

    def __contains__(self, role: object) -> bool:
        return role in self.roles

    @property
    def role_names(self) -> tuple[str, ...]:
        return tuple(self.roles)

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {
            "roles": {name: policy.to_wire() for name, policy in self.roles.items()}
        }
        if self.version is not None:
            wire["version"] = self.version
        return wire


@dataclass(frozen=True)
class ResolvedCapabilities:
    """What one role may see and do under the active document."""
    role: str
    visible_sections: tuple[Section, ...]
    own_records_only: bool
    degraded: bool = False

    @classmethod
    def denied(cls, role: str, degraded: bool = False) -> "ResolvedCapabilities":
        """Unknown role: nothing visible, scoped to own records."""
        return cls(role=role, visible_sections=(), own_records_only=True, degraded=degraded)

    @property
    def visible_urls(self) -> tuple[str, ...]:
        return tuple(s.url for s in self.visible_sections)


__all__ = ["Section", "RolePolicy", "PolicyDocument", "ResolvedCapabilities"]
