"""
Permission Core - tenant-scoped RBAC with feature gating.
"""

from clinicguard.kernel.permissions.catalog import (
    ALL_PERMISSIONS,
    FEATURE_GATES,
    ROLE_PERMISSIONS,
    feature_for,
    is_known_permission,
)
from clinicguard.kernel.permissions.gate import (
    PermissionDecision,
    TenantFeatures,
    check_permission,
    effective_permissions,
    require_permission,
)

__all__ = [
    "ALL_PERMISSIONS",
    "FEATURE_GATES",
    "ROLE_PERMISSIONS",
    "feature_for",
    "is_known_permission",
    "PermissionDecision",
    "TenantFeatures",
    "check_permission",
    "effective_permissions",
    "require_permission",
]
