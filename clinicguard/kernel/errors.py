"""
Kernel error taxonomy.

Every kernel component fails closed: ambiguous states raise one of these
errors instead of resolving to an allow. `code` is a stable identifier the
HTTP adapter (and other callers) can switch on.
"""

from typing import Any, Dict, Optional


class KernelError(Exception):
    """Base class for all kernel errors."""

    code = "kernel_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "detail": self.message, **self.details}


# Authorization errors

class AuthorizationError(KernelError):
    code = "authorization_error"


class MissingTenantContext(AuthorizationError):
    """No principal, or a principal without a tenant, reached a scoped call."""

    code = "missing_tenant_context"

    def __init__(self, message: str = "No tenant context for this operation"):
        super().__init__(message)


class TenantMismatch(AuthorizationError):
    """A caller tried to override or mutate the tenant scoping."""

    code = "tenant_mismatch"


class PermissionDenied(AuthorizationError):
    """The principal lacks the permission required for an action."""

    code = "permission_denied"

    def __init__(self, missing_permission: str, reason: Optional[str] = None):
        message = f"Missing permission: {missing_permission}"
        super().__init__(message, missing_permission=missing_permission)
        self.missing_permission = missing_permission
        self.reason = reason


# Referential errors

class ReferentialError(KernelError):
    code = "referential_error"

    def __init__(self, message: str, entity: str, resource_id: Any):
        super().__init__(message, entity=entity, resource_id=str(resource_id))
        self.entity = entity
        self.resource_id = resource_id


class ReferenceNotFound(ReferentialError):
    code = "reference_not_found"

    def __init__(self, entity: str, resource_id: Any):
        super().__init__(f"Referenced {entity} {resource_id} not found", entity, resource_id)


class CrossTenantReference(ReferentialError):
    """
    A payload referenced a row owned by another tenant.

    Security relevant: it may be an attempted boundary violation. The message
    never names the owning tenant.
    """

    code = "cross_tenant_reference"

    def __init__(self, entity: str, resource_id: Any):
        super().__init__(
            f"Referenced {entity} {resource_id} is not accessible from this clinic",
            entity,
            resource_id,
        )


# Audit durability

class AuditWriteFailed(KernelError):
    """Appending an audit entry failed; the enclosing operation is failed."""

    code = "audit_write_failed"


class ImmutableRecordError(KernelError):
    """Application code tried to update or delete an append-only record."""

    code = "immutable_record"


# Configuration / programming errors

class ScopingConfigurationError(KernelError):
    """A call site used the scoped executor in an unsupported way."""

    code = "scoping_configuration"


class UnknownPermission(KernelError):
    code = "unknown_permission"

    def __init__(self, permission_key: str):
        super().__init__(f"Unknown permission key: {permission_key}", permission_key=permission_key)


class CoreFeatureLocked(KernelError):
    code = "core_feature_locked"

    def __init__(self, feature_name: str):
        super().__init__(f"Core feature '{feature_name}' cannot be disabled", feature=feature_name)
