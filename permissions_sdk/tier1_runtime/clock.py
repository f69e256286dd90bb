"""
permissions_sdk.tier1_runtime.clock
────────────────────────────────────
Mockable time source for cache freshness. Code that ages cache entries asks a
Clock for monotonic seconds instead of calling time.monotonic() directly, so
tests can step time forward deterministically.
"""
from __future__ import annotations

import time


class Clock:
    """System clock."""

    def monotonic(self) -> float:
        """Seconds from an arbitrary origin; only differences are meaningful."""
        return time.monotonic()


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self._monotonic = start

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self._monotonic += seconds


# ── Module-level singleton ─────────────────────────────────────────────────

_clock: Clock = Clock()


def get_clock() -> Clock:
    """Return the global clock instance."""
    return _clock


def set_clock(clock: Clock) -> None:
    """Replace the global clock (use in tests)."""
    global _clock
    _clock = clock


__all__ = ["Clock", "ManualClock", "get_clock", "set_clock"]
