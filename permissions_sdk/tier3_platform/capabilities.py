"""
permissions_sdk.tier3_platform.capabilities
────────────────────────────────────────────
Read-only answers derived from one RolePolicy: which sections are visible,
whether a url is writable, whether access is scoped to own records.

Derivations are pure. Results are memoized per RolePolicy instance and
recomputed when a different instance is passed; the resolver calls forget()
whenever it swaps the cached document.
"""
from __future__ import annotations

from dataclasses import dataclass

from permissions_sdk.tier1_runtime.schemas import ResolvedCapabilities, RolePolicy, Section


@dataclass(frozen=True)
class _Derived:
    policy: RolePolicy
    visible: tuple[Section, ...]
    writable: dict[str, bool]


class CapabilityView:
    def __init__(self) -> None:
        self._memo: dict[int, _Derived] = {}
        self.computations = 0

    def _derive(self, policy: RolePolicy) -> _Derived:
        derived = self._memo.get(id(policy))
        # the stored reference keeps id() from being reused while memoized
        if derived is not None and derived.policy is policy:
            return derived
        derived = _Derived(
            policy=policy,
            visible=tuple(s for s in policy.sections if s.can_read),
            writable={s.url: s.can_write for s in policy.sections},
        )
        self._memo[id(policy)] = derived
        self.computations += 1
        return derived

    def visible_sections(self, policy: RolePolicy) -> tuple[Section, ...]:
        """Readable sections in their original order."""
        return self._derive(policy).visible

    def can_write(self, policy: RolePolicy, url: str) -> bool:
        """
        Write grant for *url* among all sections, readable or not.
        An unknown url is simply not writable.
        """
        return self._derive(policy).writable.get(url, False)

    @staticmethod
    def is_own_records_only(policy: RolePolicy) -> bool:
        return policy.own_records_only

    def capabilities(
        self, role: str, policy: RolePolicy, *, degraded: bool = False
    ) -> ResolvedCapabilities:
        return ResolvedCapabilities(
            role=role,
            visible_sections=self.visible_sections(policy),
            own_records_only=self.is_own_records_only(policy),
            degraded=degraded,
        )

    def forget(self) -> None:
        self._memo.clear()


__all__ = ["CapabilityView"]
