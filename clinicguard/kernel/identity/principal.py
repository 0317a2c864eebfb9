"""
Per-request principal.

Built once per inbound request by the authentication layer and passed
explicitly to every kernel call. Nothing in the kernel looks up a
"current user" from ambient state.
"""

import uuid
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterable, Optional

from clinicguard.config import get_settings
from clinicguard.kernel.errors import MissingTenantContext, PermissionDenied


@dataclass(frozen=True)
class Principal:
    """
    Authenticated identity plus tenant, roles and explicit grants.

    `permissions` holds only the explicit grants loaded for `tenant_id`;
    role defaults are resolved by the permission gate.
    """

    tenant_id: Optional[uuid.UUID]
    user_id: Optional[uuid.UUID]
    roles: FrozenSet[str] = field(default_factory=frozenset)
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    acting_as_operator: bool = False

    @classmethod
    def build(
        cls,
        tenant_id: Optional[uuid.UUID],
        user_id: Optional[uuid.UUID],
        roles: Iterable[str] = (),
        permissions: Iterable[str] = (),
    ) -> "Principal":
        return cls(
            tenant_id=tenant_id,
            user_id=user_id,
            roles=frozenset(roles),
            permissions=frozenset(permissions),
        )

    def has_role(self, *roles: str) -> bool:
        return any(role in self.roles for role in roles)

    def require_tenant(self) -> uuid.UUID:
        """Return the tenant id or fail closed."""
        if self.tenant_id is None:
            raise MissingTenantContext()
        return self.tenant_id

    def for_operator(
        self,
        tenant_id: uuid.UUID,
        bypass_roles: Optional[Iterable[str]] = None,
    ) -> "Principal":
        """
        Principal an operator uses to act inside one specific clinic.

        Operators never act unscoped: they pick a tenant explicitly, and
        everything they do there is audited with the operator marker.
        Explicit grants from the operator's home tenant are dropped.
        """
        allowed = get_settings().bypass_roles if bypass_roles is None else bypass_roles
        if not self.has_role(*allowed):
            raise PermissionDenied("operator.act_as_tenant")
        return replace(
            self,
            tenant_id=tenant_id,
            permissions=frozenset(),
            acting_as_operator=True,
        )


def require_principal(principal: Optional[Principal]) -> uuid.UUID:
    """Tenant id of `principal`, raising MissingTenantContext if there is none."""
    if principal is None:
        raise MissingTenantContext()
    return principal.require_tenant()
