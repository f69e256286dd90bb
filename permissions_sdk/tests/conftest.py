"""
permissions_sdk test configuration.

All tests run offline: the default source backend is the in-memory static
source and every HTTP call is mocked with respx.
"""
from __future__ import annotations

import copy
import os

import pytest

# ── Force offline defaults for all tests ──────────────────────────────────
# These must be set before any permissions_sdk modules are imported.

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("PERMISSIONS_SOURCE_BACKEND", "static")
os.environ.setdefault("PERMISSIONS_POLICY_URL", "http://policy.test/api/permissions/config")
os.environ.setdefault("PERMISSIONS_LOG_LEVEL", "WARNING")
os.environ.setdefault("PERMISSIONS_METRICS_ENABLED", "true")


ADMIN_DOCUMENT = {
    "roles": {
        "admin": {
            "own_records_only": False,
            "sections": [
                {"name": "Grades", "url": "/assessments", "can_read": True, "can_write": True},
            ],
        }
    }
}

SCHOOL_DOCUMENT = {
    "version": "2025-03",
    "roles": {
        "admin": {
            "own_records_only": False,
            "sections": [
                {"name": "Lessons", "url": "/lessons", "can_read": True, "can_write": True},
                {"name": "Audit", "url": "/audit", "can_read": False, "can_write": True},
                {"name": "Grades", "url": "/assessments", "can_read": True, "can_write": False},
                {"name": "Users", "url": "/users", "can_read": True, "can_write": True},
            ],
        },
        "teacher": {
            "own_records_only": True,
            "sections": [
                {"name": "Grades", "url": "/assessments", "can_read": True, "can_write": True},
                {"name": "Attendance", "url": "/attendances", "can_read": True, "can_write": True},
            ],
        },
        "guest": {"own_records_only": True, "sections": []},
    },
}


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_module_singletons():
    """
    Reset cached singletons between tests so no state bleeds across them.
    """
    import permissions_sdk.tier0_core.config as _config
    import permissions_sdk.tier1_runtime.clock as _clock
    import permissions_sdk.tier2_reliability.cache as _cache
    import permissions_sdk.tier2_reliability.health as _health
    import permissions_sdk.tier3_platform.resolver as _resolver
    import permissions_sdk.tier3_platform.source as _source

    orig_clock = _clock.get_clock()

    yield

    _config._reset_config()
    _clock.set_clock(orig_clock)
    _cache._reset_cache()
    _health._reset_health_checker()
    _resolver._reset_resolver()
    _source._reset_source()


@pytest.fixture
def admin_document():
    return copy.deepcopy(ADMIN_DOCUMENT)


@pytest.fixture
def school_document():
    return copy.deepcopy(SCHOOL_DOCUMENT)


@pytest.fixture
def manual_clock():
    from permissions_sdk.tier1_runtime.clock import ManualClock
    return ManualClock()


@pytest.fixture
def make_resolver(manual_clock):
    """Build a PolicyResolver over a fresh cache driven by the manual clock."""
    from permissions_sdk.tier2_reliability.cache import PermissionCache
    from permissions_sdk.tier3_platform.resolver import PolicyResolver

    def _make(source, **kwargs):
        kwargs.setdefault("ttl", 60.0)
        kwargs.setdefault("degraded_ttl", 10.0)
        kwargs.setdefault("fetch_timeout", 1.0)
        kwargs.setdefault("fetch_attempts", 1)
        return PolicyResolver(source, cache=PermissionCache(clock=manual_clock), **kwargs)

    return _make
