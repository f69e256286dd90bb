"""
permissions_sdk.tier2_reliability.health
─────────────────────────────────────────
Readiness checks. The policy check reports "degraded" while the resolver is
serving the built-in fallback; it is registered as non-critical because a
degraded resolver still answers every query.

Usage:
    checker = get_health_checker()
    checker.register("policy", policy_health_check(resolver), critical=False)
    result = await checker.readiness()
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from permissions_sdk.tier3_platform.resolver import PolicyResolver


@dataclass
class CheckResult:
    name: str
    status: str           # "ok" | "degraded" | "failed"
    critical: bool
    latency_ms: float
    detail: str | None = None


class HealthChecker:
    def __init__(self) -> None:
        self._checks: list[dict[str, Any]] = []

    def register(
        self,
        name: str,
        check_fn: Callable[[], Any],
        critical: bool = True,
        timeout: float = 5.0,
    ) -> None:
        """
        Register a check. check_fn is sync or async and returns True/False,
        or a status string ("ok" | "degraded" | "failed").
        """
        self._checks.append(
            {"name": name, "fn": check_fn, "critical": critical, "timeout": timeout}
        )

    async def readiness(self) -> dict:
        results: list[CheckResult] = []

        for check in self._checks:
            start = time.monotonic()
            detail = None
            try:
                fn = check["fn"]
                if asyncio.iscoroutinefunction(fn):
                    outcome = await asyncio.wait_for(fn(), timeout=check["timeout"])
                else:
                    outcome = fn()
                if isinstance(outcome, str):
                    status = outcome
                else:
                    status = "ok" if outcome else "failed"
            except asyncio.TimeoutError:
                status = "failed"
                detail = f"Timed out after {check['timeout']}s"
            except Exception as exc:
                status = "failed"
                detail = str(exc)

            results.append(CheckResult(
                name=check["name"],
                status=status,
                critical=check["critical"],
                latency_ms=round((time.monotonic() - start) * 1000, 2),
                detail=detail,
            ))

        all_critical_ok = all(r.status == "ok" for r in results if r.critical)
        any_degraded = any(r.status != "ok" for r in results)

        return {
            "status": "failed" if not all_critical_ok else ("degraded" if any_degraded else "ok"),
            "checks": [
                {
                    "name": r.name,
                    "status": r.status,
                    "critical": r.critical,
                    "latency_ms": r.latency_ms,
                    **({"detail": r.detail} if r.detail else {}),
                }
                for r in results
            ],
            "timestamp": time.time(),
        }


def policy_health_check(resolver: "PolicyResolver") -> Callable[[], str]:
    """Check reporting ok (live policy), degraded (fallback) or failed (nothing cached)."""
    def _check() -> str:
        entry = resolver.cache.entry
        if entry is None:
            return "failed"
        return "degraded" if entry.degraded else "ok"

    return _check


# ── Singleton registry ────────────────────────────────────────────────────────

_checker: HealthChecker | None = None


def get_health_checker() -> HealthChecker:
    global _checker
    if _checker is None:
        _checker = HealthChecker()
    return _checker


def _reset_health_checker() -> None:
    global _checker
    _checker = None
