"""
Kernel Data Models

SQLAlchemy models for the tenant safety kernel: the clinic (tenant), the
tenant-scoped entities it protects, and the kernel's own append-only audit
trail, permission grants and feature toggles.
"""

from clinicguard.kernel.models.base import Base, TimestampMixin, TenantScopedMixin, generate_uuid
from clinicguard.kernel.models.tenant import Clinic
from clinicguard.kernel.models.user import User, UserRole
from clinicguard.kernel.models.clinical import (
    Patient,
    Appointment,
    Visit,
    LabRequest,
    LabResult,
    Invoice,
)
from clinicguard.kernel.models.audit_entry import AuditEntry, AuditAction
from clinicguard.kernel.models.permission import PermissionGrant
from clinicguard.kernel.models.feature_flag import TenantFeature

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "TenantScopedMixin",
    "generate_uuid",
    # Tenant & identity
    "Clinic",
    "User",
    "UserRole",
    # Clinical
    "Patient",
    "Appointment",
    "Visit",
    "LabRequest",
    "LabResult",
    "Invoice",
    # Audit
    "AuditEntry",
    "AuditAction",
    # Permissions & features
    "PermissionGrant",
    "TenantFeature",
]
