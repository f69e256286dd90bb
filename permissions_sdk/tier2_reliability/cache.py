"""
permissions_sdk.tier2_reliability.cache
────────────────────────────────────────
Session-scoped holder for the last resolved policy document.

The cache holds one immutable CacheEntry. Writers replace it with a single
assignment, so readers see either the old entry or the new one, never a mix.
Every replacement or clear bumps ``generation``; the resolver keys its
in-flight fetch on it.

Freshness is TTL based, measured with the mockable clock. An expired entry
is still returned by ``entry`` (stale-while-revalidate); ``is_fresh()`` tells
the resolver whether to refresh.
"""
from __future__ import annotations

from dataclasses import dataclass

from permissions_sdk.tier1_runtime.clock import Clock, get_clock
from permissions_sdk.tier1_runtime.schemas import PolicyDocument


@dataclass(frozen=True)
class CacheEntry:
    document: PolicyDocument
    degraded: bool
    stored_at: float
    ttl: float
    generation: int
    # error kind that forced the fallback, None for a live document
    reason: str | None = None

    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at()


class PermissionCache:
    """In-process policy cache. One instance per session."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock
        self._entry: CacheEntry | None = None
        self._generation = 0

    @property
    def clock(self) -> Clock:
        return self._clock or get_clock()

    @property
    def entry(self) -> CacheEntry | None:
        """Current entry, fresh or stale. None when empty."""
        return self._entry

    @property
    def document(self) -> PolicyDocument | None:
        entry = self._entry
        return entry.document if entry else None

    @property
    def generation(self) -> int:
        return self._generation

    def is_fresh(self) -> bool:
        entry = self._entry
        return entry is not None and entry.is_fresh(self.clock.monotonic())

    def is_degraded(self) -> bool:
        entry = self._entry
        return entry is not None and entry.degraded

    def store(
        self,
        document: PolicyDocument,
        *,
        degraded: bool,
        ttl: float,
        reason: str | None = None,
    ) -> CacheEntry:
        """Replace the current entry atomically and return the new one."""
        self._generation += 1
        entry = CacheEntry(
            document=document,
            degraded=degraded,
            stored_at=self.clock.monotonic(),
            ttl=ttl,
            generation=self._generation,
            reason=reason,
        )
        self._entry = entry
        return entry

    def clear(self) -> None:
        """Drop the cached document (logout / session end)."""
        self._generation += 1
        self._entry = None


# ── Process default ───────────────────────────────────────────────────────────

_cache: PermissionCache | None = None


def get_cache() -> PermissionCache:
    global _cache
    if _cache is None:
        _cache = PermissionCache()
    return _cache


def _reset_cache() -> None:
    global _cache
    _cache = None


__all__ = ["CacheEntry", "PermissionCache", "get_cache"]
