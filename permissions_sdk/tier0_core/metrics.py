"""
permissions_sdk.tier0_core.metrics
───────────────────────────────────
Counters and gauges for policy resolution, with standard service/env labels.
Exported through the default Prometheus registry.

Stack: prometheus-client
Configure via: PERMISSIONS_METRICS_ENABLED=true|false, APP_NAME, APP_ENV
"""
from __future__ import annotations

import functools
from typing import Any, Callable

from prometheus_client import Counter, Gauge

from permissions_sdk.tier0_core.config import get_config
from permissions_sdk.tier0_core.logging import get_logger

# Standard labels applied to every metric
_DEFAULT_LABELS = ["service", "env"]
_SERVICE = get_config().app_name
_ENV = get_config().environment


def _default_labels() -> dict[str, str]:
    return {"service": _SERVICE, "env": _ENV}


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create a counter with standard labels. Call once per metric name.

    Usage:
        fetches = counter("policy_fetch_total", "Policy fetches", ["outcome"])
        fetches(outcome="ok").inc()
    """
    all_labels = _DEFAULT_LABELS + (labels or [])
    c = Counter(name, description, all_labels)

    def _counter(**extra_labels: str) -> Counter:
        return c.labels(**_default_labels(), **extra_labels)

    return _counter


def gauge(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """Create a gauge with standard labels. Call once per metric name."""
    all_labels = _DEFAULT_LABELS + (labels or [])
    g = Gauge(name, description, all_labels)

    def _gauge(**extra_labels: str) -> Gauge:
        return g.labels(**_default_labels(), **extra_labels)

    return _gauge


# ── Policy resolution metrics ─────────────────────────────────────────────────

policy_fetch_total = counter(
    "permissions_policy_fetch_total",
    "Policy document fetch cycles by outcome",
    ["outcome"],
)
policy_fallback_total = counter(
    "permissions_policy_fallback_total",
    "Fallback policy substitutions by underlying error kind",
    ["reason"],
)
policy_degraded = gauge(
    "permissions_policy_degraded",
    "1 while the cached policy came from the built-in fallback",
)


def _enabled() -> bool:
    return get_config().metrics_enabled


def _recorder(fn: Callable[..., None]) -> Callable[..., None]:
    """Metric writes are observability only; a failing write is logged, never raised."""
    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> None:
        if not _enabled():
            return
        try:
            fn(*args, **kwargs)
        except ValueError as exc:
            get_logger("permissions_sdk.metrics").warning(
                "metrics.record_failed",
                metric=fn.__name__,
                error=str(exc),
            )

    return wrapper


@_recorder
def record_fetch(outcome: str) -> None:
    """outcome: ok | unreachable | http_status | timeout | invalid"""
    policy_fetch_total(outcome=outcome).inc()


@_recorder
def record_fallback(reason: str) -> None:
    policy_fallback_total(reason=reason).inc()


@_recorder
def set_degraded(degraded: bool) -> None:
    policy_degraded().set(1 if degraded else 0)


def sample(name: str, **labels: str) -> float | None:
    """Read a metric value from the default registry (tests, debugging)."""
    from prometheus_client import REGISTRY

    return REGISTRY.get_sample_value(
        name, {**_default_labels(), **labels}
    )


__all__ = [
    "counter", "gauge",
    "record_fetch", "record_fallback", "set_degraded", "sample",
]
