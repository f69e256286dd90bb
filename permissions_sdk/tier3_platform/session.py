"""
permissions_sdk.tier3_platform.session
───────────────────────────────────────
Per-session permission state for a UI or CLI: the current role, its last
resolved capabilities, and loading/error flags. Screens ask the session
instead of the resolver so every answer is about the signed-in role.

Before load() (and after clear()) every answer is the closed one: no
sections, no writes, own records only.
"""
from __future__ import annotations

import uuid

from permissions_sdk.tier0_core.logging import clear_context, get_logger
from permissions_sdk.tier1_runtime.context import RequestContext, set_context
from permissions_sdk.tier1_runtime.schemas import ResolvedCapabilities, RolePolicy, Section
from permissions_sdk.tier3_platform.resolver import PolicyResolver, get_resolver

logger = get_logger("permissions_sdk.session")


class PermissionSession:
    def __init__(
        self,
        resolver: PolicyResolver | None = None,
        *,
        session_id: str | None = None,
    ) -> None:
        self._resolver = resolver or get_resolver()
        self.session_id = session_id or f"ses-{uuid.uuid4().hex[:12]}"
        self.role: str | None = None
        self.capabilities: ResolvedCapabilities | None = None
        self._policy: RolePolicy | None = None
        self.loading = False
        self.error: str | None = None

    async def load(self, role: str, *, force_refresh: bool = False) -> ResolvedCapabilities:
        """Resolve *role* and make it the session's current role."""
        self.loading = True
        self.error = None
        set_context(RequestContext(session_id=self.session_id, role=role))
        try:
            caps, policy = await self._resolver.resolve_policy(role, force_refresh=force_refresh)
        finally:
            self.loading = False

        self.role = role
        self.capabilities = caps
        self._policy = policy
        if caps.degraded:
            self.error = f"live permissions unavailable ({self._resolver.degraded_reason()}); using built-in policy"
        logger.info(
            "session.permissions_loaded",
            sections=len(caps.visible_sections),
            own_records_only=caps.own_records_only,
            degraded=caps.degraded,
        )
        return caps

    @property
    def available_sections(self) -> tuple[Section, ...]:
        if self.capabilities is None:
            return ()
        return self.capabilities.visible_sections

    def can_write(self, url: str) -> bool:
        """Write grant under the same policy that produced available_sections."""
        if self._policy is None:
            return False
        return self._resolver.view.can_write(self._policy, url)

    @property
    def is_own_records_only(self) -> bool:
        if self.capabilities is None:
            return True
        return self.capabilities.own_records_only

    def is_degraded(self) -> bool:
        return self.capabilities is not None and self.capabilities.degraded

    def clear(self) -> None:
        """Logout: forget the role and drop the cached policy."""
        self.role = None
        self.capabilities = None
        self._policy = None
        self.error = None
        self._resolver.invalidate()
        clear_context()
        logger.info("session.cleared", session_id=self.session_id)


__all__ = ["PermissionSession"]
