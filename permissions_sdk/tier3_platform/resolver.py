"""
permissions_sdk.tier3_platform.resolver
────────────────────────────────────────
Role → capabilities. Orchestrates fetch → validate → fallback → cache →
derive, and is the only writer of the PermissionCache it is given.

resolve() never raises for transport or data problems: failures are carried
as Err values, replaced by the built-in fallback document, and surface only
as ``degraded`` plus a log record and a metric. Unknown roles fail closed.

Concurrency (asyncio):
  - at most one fetch in flight per cache generation; concurrent callers
    await the same task
  - a caller cancelled while waiting does not cancel the shared fetch
  - an expired entry is served once more while a background refresh runs
    (stale-while-revalidate); force_refresh=True waits for a fresh result

Usage:
    resolver = PolicyResolver(HttpPolicySource(url), cache=PermissionCache())
    caps = await resolver.resolve("teacher")
    resolver.can_write("teacher", "/assessments")
"""
from __future__ import annotations

import asyncio
from typing import Any

from permissions_sdk.tier0_core import metrics
from permissions_sdk.tier0_core.config import PermissionsConfig, get_config
from permissions_sdk.tier0_core.errors import (
    Err,
    FetchError,
    FetchErrorKind,
    Ok,
    PolicyValidationError,
    Result,
)
from permissions_sdk.tier0_core.logging import get_logger
from permissions_sdk.tier1_runtime.retry import retry_policy
from permissions_sdk.tier1_runtime.schemas import PolicyDocument, ResolvedCapabilities, RolePolicy
from permissions_sdk.tier1_runtime.validate import validate_policy
from permissions_sdk.tier2_reliability.cache import CacheEntry, PermissionCache
from permissions_sdk.tier2_reliability.fallback import FallbackPolicyProvider, substitute
from permissions_sdk.tier3_platform.capabilities import CapabilityView
from permissions_sdk.tier3_platform.source import PolicySource, get_source

logger = get_logger("permissions_sdk.resolver")


class PolicyResolver:
    def __init__(
        self,
        source: PolicySource | None = None,
        *,
        cache: PermissionCache | None = None,
        fallback: FallbackPolicyProvider | None = None,
        view: CapabilityView | None = None,
        config: PermissionsConfig | None = None,
        ttl: float | None = None,
        degraded_ttl: float | None = None,
        fetch_timeout: float | None = None,
        fetch_attempts: int | None = None,
        retry_wait: float = 0.2,
    ) -> None:
        cfg = config or get_config()
        self._source = source or get_source(config)
        self._cache = cache if cache is not None else PermissionCache()
        self._fallback = fallback or FallbackPolicyProvider()
        self._view = view or CapabilityView()
        self._ttl = cfg.cache_ttl if ttl is None else ttl
        self._degraded_ttl = cfg.degraded_ttl if degraded_ttl is None else degraded_ttl
        self._fetch_timeout = cfg.fetch_timeout if fetch_timeout is None else fetch_timeout
        self._fetch_attempts = cfg.fetch_attempts if fetch_attempts is None else fetch_attempts
        self._retry_wait = retry_wait

        self._inflight: asyncio.Task[CacheEntry] | None = None
        self._inflight_generation: int | None = None
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def cache(self) -> PermissionCache:
        return self._cache

    @property
    def view(self) -> CapabilityView:
        return self._view

    @property
    def source(self) -> PolicySource:
        return self._source

    # ── Queries ───────────────────────────────────────────────────────────────

    async def resolve(self, role: str, *, force_refresh: bool = False) -> ResolvedCapabilities:
        """Capabilities for *role*. Always returns; never raises on fetch/validation failure."""
        caps, _ = await self.resolve_policy(role, force_refresh=force_refresh)
        return caps

    async def resolve_policy(
        self, role: str, *, force_refresh: bool = False
    ) -> tuple[ResolvedCapabilities, RolePolicy | None]:
        """
        Like resolve(), but also returns the RolePolicy the capabilities were
        derived from (None for an unknown role). Both come from one cache entry.
        """
        entry = self._cache.entry
        if entry is None or force_refresh:
            entry = await self.refresh()
        elif not self._cache.is_fresh():
            self._schedule_refresh()
        return self._capabilities(role, entry), entry.document.get(role)

    def can_write(self, role: str, url: str) -> bool:
        """Write grant for *url* under the cached document. False if nothing applies."""
        document = self._cache.document
        policy = document.get(role) if document is not None else None
        if policy is None:
            return False
        return self._view.can_write(policy, url)

    def is_degraded(self) -> bool:
        """True while the cached document is the built-in fallback."""
        return self._cache.is_degraded()

    def degraded_reason(self) -> str | None:
        entry = self._cache.entry
        return entry.reason if entry is not None else None

    # ── Cache control ─────────────────────────────────────────────────────────

    async def refresh(self) -> CacheEntry:
        """Run (or join) a fetch cycle and return the entry it produced."""
        return await asyncio.shield(self._shared_cycle())

    def invalidate(self) -> None:
        """Forget the cached document (logout). The next resolve() fetches."""
        self._cache.clear()
        self._view.forget()
        logger.info("policy.cache_cleared", generation=self._cache.generation)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _capabilities(self, role: str, entry: CacheEntry) -> ResolvedCapabilities:
        policy = entry.document.get(role)
        if policy is None:
            logger.info("policy.unknown_role", role=role, degraded=entry.degraded)
            return ResolvedCapabilities.denied(role, degraded=entry.degraded)
        return self._view.capabilities(role, policy, degraded=entry.degraded)

    def _shared_cycle(self) -> asyncio.Task[CacheEntry]:
        generation = self._cache.generation
        task = self._inflight
        if task is not None and not task.done() and self._inflight_generation == generation:
            return task
        task = asyncio.get_running_loop().create_task(self._cycle(generation))
        self._inflight = task
        self._inflight_generation = generation
        task.add_done_callback(self._on_cycle_done)
        return task

    def _on_cycle_done(self, task: asyncio.Task[CacheEntry]) -> None:
        if self._inflight is task:
            self._inflight = None
            self._inflight_generation = None
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "policy.refresh_crashed",
                error=str(task.exception()),
                error_type=type(task.exception()).__name__,
            )

    def _schedule_refresh(self) -> None:
        task = self._shared_cycle()
        if task not in self._background:
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            logger.debug("policy.refresh_scheduled", generation=self._cache.generation)

    async def _cycle(self, generation: int) -> CacheEntry:
        result = await self._fetch_and_validate()
        self._report(result)
        document, degraded = substitute(result, self._fallback)
        reason = None if isinstance(result, Ok) else result.error.kind.value
        ttl = self._degraded_ttl if degraded else self._ttl

        if self._cache.generation != generation:
            # invalidated while fetching: answer the waiters, leave the cache empty
            logger.info("policy.discarded_after_invalidate", generation=generation)
            return CacheEntry(
                document=document,
                degraded=degraded,
                stored_at=self._cache.clock.monotonic(),
                ttl=0.0,
                generation=generation,
                reason=reason,
            )

        entry = self._cache.store(document, degraded=degraded, ttl=ttl, reason=reason)
        self._view.forget()
        metrics.set_degraded(degraded)
        return entry

    async def _fetch_and_validate(self) -> Result[PolicyDocument]:
        fetch = self._fetch_once
        if self._fetch_attempts > 1:
            fetch = retry_policy(
                max_attempts=self._fetch_attempts,
                min_wait=self._retry_wait,
                max_wait=self._retry_wait * 10,
                jitter=self._retry_wait,
            )(fetch)
        try:
            raw = await fetch()
        except FetchError as exc:
            return Err(exc)
        return validate_policy(raw)

    async def _fetch_once(self) -> Any:
        try:
            return await asyncio.wait_for(self._source.fetch(), timeout=self._fetch_timeout)
        except asyncio.TimeoutError as exc:
            raise FetchError(
                FetchErrorKind.TIMEOUT,
                f"policy fetch exceeded {self._fetch_timeout}s",
            ) from exc
        except OSError as exc:
            raise FetchError(FetchErrorKind.UNREACHABLE, str(exc)) from exc

    def _report(self, result: Result[PolicyDocument]) -> None:
        if isinstance(result, Ok):
            logger.info(
                "policy.fetched",
                roles=len(result.value.roles),
                version=result.value.version,
            )
            metrics.record_fetch("ok")
            return

        error = result.error
        if isinstance(error, PolicyValidationError):
            # server-side authoring bug, not a network blip
            logger.error(
                "policy.invalid",
                kind=error.kind.value,
                role=error.role,
                url=error.url,
                path=error.path,
                error=error.detail,
            )
            metrics.record_fetch("invalid")
        else:
            logger.warning(
                "policy.fetch_failed",
                kind=error.kind.value,
                status_code=error.status_code,
                error=error.detail,
            )
            metrics.record_fetch(error.kind.value)

        logger.warning(
            "policy.fallback_used",
            version=self._fallback.version,
            reason=error.kind.value,
        )
        metrics.record_fallback(error.kind.value)


# ── Process default ───────────────────────────────────────────────────────────

_resolver: PolicyResolver | None = None


def get_resolver() -> PolicyResolver:
    global _resolver
    if _resolver is None:
        from permissions_sdk.tier2_reliability.cache import get_cache

        _resolver = PolicyResolver(cache=get_cache())
    return _resolver


def _reset_resolver() -> None:
    global _resolver
    _resolver = None


# ── Public API ────────────────────────────────────────────────────────────────

async def resolve(role: str, *, force_refresh: bool = False) -> ResolvedCapabilities:
    """
    Resolve capabilities for *role* with the process-default resolver.

    Usage:
        caps = await resolve("student")
        [s.url for s in caps.visible_sections]
    """
    return await get_resolver().resolve(role, force_refresh=force_refresh)


def is_degraded() -> bool:
    return get_resolver().is_degraded()


__all__ = ["PolicyResolver", "get_resolver", "resolve", "is_degraded"]
