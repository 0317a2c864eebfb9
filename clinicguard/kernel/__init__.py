"""
Tenant Safety Kernel

The layer every clinic request passes through before touching data:
- Identity Core (per-request Principal, access tokens)
- Tenant isolation (scoped query executor, reference validator, integrity sweep)
- Permission Core (role defaults, explicit grants, feature gates)
- Audit trail (append-only, written with the mutation it describes)

Invariants:
- Every query on a tenant-scoped entity carries the principal's tenant filter
- References are validated against the acting clinic before any write
- No accepted mutation commits without exactly one audit entry per row
"""

from clinicguard.kernel.errors import (
    KernelError,
    AuthorizationError,
    MissingTenantContext,
    TenantMismatch,
    PermissionDenied,
    ReferentialError,
    ReferenceNotFound,
    CrossTenantReference,
    AuditWriteFailed,
    ImmutableRecordError,
    ScopingConfigurationError,
    UnknownPermission,
    CoreFeatureLocked,
)
from clinicguard.kernel.models import (
    Clinic,
    User,
    UserRole,
    AuditEntry,
    AuditAction,
    PermissionGrant,
    TenantFeature,
)

__all__ = [
    # Errors
    "KernelError",
    "AuthorizationError",
    "MissingTenantContext",
    "TenantMismatch",
    "PermissionDenied",
    "ReferentialError",
    "ReferenceNotFound",
    "CrossTenantReference",
    "AuditWriteFailed",
    "ImmutableRecordError",
    "ScopingConfigurationError",
    "UnknownPermission",
    "CoreFeatureLocked",
    # Models
    "Clinic",
    "User",
    "UserRole",
    "AuditEntry",
    "AuditAction",
    "PermissionGrant",
    "TenantFeature",
]
