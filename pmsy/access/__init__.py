"""Application-level row visibility.

Per-table policies, effective filter compilation, single-record guards
and per-caller rate limiting.
"""

from .config import (
    ADMIN_ROLE,
    DEFAULT_POLICIES,
    AccessConfig,
    Action,
    Decision,
    MembershipRelation,
    PolicyEntry,
    RateLimitConfig,
)
from .context import UserContext
from .guard import RecordGuard
from .policies import (
    DENY_ALL,
    UNRESTRICTED,
    DenyAll,
    EffectiveFilter,
    PermissionFilterCompiler,
    Restricted,
    Unrestricted,
)
from .rate_limit import RateLimiter
from .registry import PolicyConfigurationError, PolicyRegistry, load_policy_file

__all__ = [
    # Config
    "ADMIN_ROLE",
    "DEFAULT_POLICIES",
    "AccessConfig",
    "Action",
    "Decision",
    "MembershipRelation",
    "PolicyEntry",
    "RateLimitConfig",
    # Context
    "UserContext",
    # Registry
    "PolicyConfigurationError",
    "PolicyRegistry",
    "load_policy_file",
    # Policies
    "DENY_ALL",
    "UNRESTRICTED",
    "DenyAll",
    "EffectiveFilter",
    "PermissionFilterCompiler",
    "Restricted",
    "Unrestricted",
    # Guard
    "RecordGuard",
    # Rate limiting
    "RateLimiter",
]
