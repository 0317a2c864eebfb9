"""
Permission gate.

`check_permission` is a pure function of (principal, keys, feature
snapshot): it does no I/O and never mutates its inputs, so the same inputs
always give the same decision. Evaluation order:

1. a bypass (operator) role allows
2. explicit grants held for the principal's own clinic
3. defaults implied by the principal's roles
4. a key gated by a feature that is not enabled for the clinic is denied,
   whatever 2 and 3 said
"""

import uuid
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Sequence, Union

from clinicguard.config import get_settings
from clinicguard.kernel.errors import MissingTenantContext, PermissionDenied
from clinicguard.kernel.identity.principal import Principal
from clinicguard.kernel.permissions.catalog import ALL_PERMISSIONS, feature_for, role_defaults

PermissionKeys = Union[str, Iterable[str]]


@dataclass(frozen=True)
class TenantFeatures:
    """Snapshot of the features enabled for one clinic."""

    tenant_id: uuid.UUID
    enabled: FrozenSet[str] = field(default_factory=frozenset)

    def is_enabled(self, name: str) -> bool:
        return name in self.enabled


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: str
    granted_permission: Optional[str] = None
    missing_permission: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


def _normalize_keys(keys: PermissionKeys) -> List[str]:
    if isinstance(keys, str):
        return [keys]
    return list(keys)


def _enabled_features(principal: Principal, features: Optional[TenantFeatures]) -> FrozenSet[str]:
    # A snapshot taken for another clinic counts as no features at all.
    if features is None or features.tenant_id != principal.tenant_id:
        return frozenset()
    return features.enabled


def _has_bypass_role(principal: Principal, bypass_roles: Optional[Sequence[str]]) -> bool:
    roles = get_settings().bypass_roles if bypass_roles is None else bypass_roles
    return principal.has_role(*roles)


def check_permission(
    principal: Optional[Principal],
    keys: PermissionKeys,
    features: Optional[TenantFeatures] = None,
    *,
    bypass_roles: Optional[Sequence[str]] = None,
) -> PermissionDecision:
    """
    Decide whether `principal` may act under any one of `keys`.

    Args:
        principal: The acting principal
        keys: One permission key, or several of which any one suffices
        features: Feature snapshot of the principal's clinic
        bypass_roles: Override of the configured bypass roles

    Returns:
        PermissionDecision; a denial names only the first requested key
    """
    requested = _normalize_keys(keys)
    first = requested[0] if requested else None

    if principal is None or principal.tenant_id is None:
        return PermissionDecision(allowed=False, reason="no_tenant", missing_permission=first)
    if not requested:
        return PermissionDecision(allowed=False, reason="no_keys")

    if _has_bypass_role(principal, bypass_roles):
        return PermissionDecision(allowed=True, reason="bypass_role", granted_permission=first)

    enabled = _enabled_features(principal, features)
    defaults = frozenset().union(*(role_defaults(role) for role in principal.roles))

    feature_blocked = False
    for key in requested:
        feature = feature_for(key)
        if feature is not None and feature not in enabled:
            feature_blocked = True
            continue
        if key in principal.permissions:
            return PermissionDecision(allowed=True, reason="grant", granted_permission=key)
        if key in defaults:
            return PermissionDecision(allowed=True, reason="role_default", granted_permission=key)

    return PermissionDecision(
        allowed=False,
        reason="feature_disabled" if feature_blocked else "not_granted",
        missing_permission=first,
    )


def require_permission(
    principal: Optional[Principal],
    keys: PermissionKeys,
    features: Optional[TenantFeatures] = None,
    *,
    bypass_roles: Optional[Sequence[str]] = None,
) -> PermissionDecision:
    """Like check_permission, but raise instead of returning a denial."""
    decision = check_permission(principal, keys, features, bypass_roles=bypass_roles)
    if decision.allowed:
        return decision
    if decision.reason == "no_tenant":
        raise MissingTenantContext()
    raise PermissionDenied(decision.missing_permission or "", reason=decision.reason)


def effective_permissions(
    principal: Principal,
    features: Optional[TenantFeatures] = None,
    *,
    bypass_roles: Optional[Sequence[str]] = None,
) -> List[str]:
    """Every catalog key the principal is currently allowed, sorted."""
    return sorted(
        key
        for key in ALL_PERMISSIONS
        if check_permission(principal, key, features, bypass_roles=bypass_roles).allowed
    )
