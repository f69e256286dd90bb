"""
permissions_sdk
───────────────
Client-side role-based access resolution. Stable top-level exports; import
from here, not from sub-modules directly.

The resolver is advisory: real enforcement belongs to the server APIs the
resolved permissions gate.
"""
from permissions_sdk.tier0_core.logging import get_logger
from permissions_sdk.tier0_core.errors import (
    PermissionsError,
    FetchError,
    FetchErrorKind,
    PolicyValidationError,
    ValidationErrorKind,
    ConfigurationError,
)
from permissions_sdk.tier0_core.config import get_config, PermissionsConfig

from permissions_sdk.tier1_runtime.schemas import (
    Section,
    RolePolicy,
    PolicyDocument,
    ResolvedCapabilities,
)
from permissions_sdk.tier1_runtime.validate import PolicyValidator, validate_policy

from permissions_sdk.tier2_reliability.cache import PermissionCache, CacheEntry
from permissions_sdk.tier2_reliability.fallback import (
    FallbackPolicyProvider,
    FALLBACK_POLICY_VERSION,
)
from permissions_sdk.tier2_reliability.health import HealthChecker, policy_health_check

from permissions_sdk.tier3_platform.source import (
    PolicySource,
    HttpPolicySource,
    StaticPolicySource,
)
from permissions_sdk.tier3_platform.capabilities import CapabilityView
from permissions_sdk.tier3_platform.resolver import PolicyResolver, resolve, is_degraded
from permissions_sdk.tier3_platform.session import PermissionSession

__version__ = "0.1.0"
__all__ = [
    # logging
    "get_logger",
    # errors
    "PermissionsError", "FetchError", "FetchErrorKind",
    "PolicyValidationError", "ValidationErrorKind", "ConfigurationError",
    # config
    "get_config", "PermissionsConfig",
    # model
    "Section", "RolePolicy", "PolicyDocument", "ResolvedCapabilities",
    # validation
    "PolicyValidator", "validate_policy",
    # cache & fallback
    "PermissionCache", "CacheEntry", "FallbackPolicyProvider", "FALLBACK_POLICY_VERSION",
    # health
    "HealthChecker", "policy_health_check",
    # sources
    "PolicySource", "HttpPolicySource", "StaticPolicySource",
    # resolution
    "CapabilityView", "PolicyResolver", "resolve", "is_degraded",
    "PermissionSession",
]
