"""
Explicit permission grants.

Grants add to a user's role defaults inside one clinic. Revoking keeps the
row and stamps `revoked_at`, so the grant history stays readable. All
changes go through the unit of work and are audited as
`permission.granted` / `permission.revoked`.
"""

import uuid
from typing import Iterable, List, Optional

from clinicguard.kernel.errors import UnknownPermission
from clinicguard.kernel.models.audit_entry import AuditAction
from clinicguard.kernel.models.permission import PermissionGrant
from clinicguard.kernel.permissions.catalog import is_known_permission
from clinicguard.kernel.tenancy.references import ResourceReference
from clinicguard.kernel.unit_of_work import TenantUnitOfWork
from clinicguard.logging_config import get_logger

logger = get_logger(__name__)

MANAGE_PERMISSION = "admin.permissions"


def _check_keys(keys: Iterable[str]) -> List[str]:
    keys = list(dict.fromkeys(keys))
    for key in keys:
        if not is_known_permission(key):
            raise UnknownPermission(key)
    return keys


class PermissionGrantService:
    """
    Grant management for the clinic of the unit of work's principal.

    Usage:
        async with TenantUnitOfWork(session, principal, features) as uow:
            await PermissionGrantService(uow).grant(user_id, "lab.results")
    """

    def __init__(self, uow: TenantUnitOfWork):
        self.uow = uow

    async def _active(self, user_id: uuid.UUID, keys: Optional[List[str]] = None) -> List[PermissionGrant]:
        filters = {"user_id": user_id, "revoked_at": None}
        if keys is not None:
            filters["permission_key"] = keys
        return await self.uow.select(
            PermissionGrant,
            filters,
            permission=MANAGE_PERMISSION,
            order_by=["permission_key"],
        )

    async def _validate_user(self, user_id: uuid.UUID) -> None:
        await self.uow.validator.validate_references(
            self.uow.principal, [ResourceReference("user", user_id)]
        )

    async def active_keys(self, user_id: uuid.UUID) -> List[str]:
        """Keys explicitly granted to the user, sorted."""
        grants = await self._active(user_id)
        await self._validate_user(user_id)
        return [grant.permission_key for grant in grants]

    async def grant(self, user_id: uuid.UUID, permission_key: str) -> PermissionGrant:
        """Grant one key; granting an active key again is a no-op."""
        _check_keys([permission_key])
        existing = await self._active(user_id, [permission_key])
        if existing:
            return existing[0]

        grant = await self.uow.insert(
            PermissionGrant,
            {
                "user_id": user_id,
                "permission_key": permission_key,
                "granted_by": self.uow.principal.user_id,
                "granted_at": self.uow.clock(),
            },
            permission=MANAGE_PERMISSION,
            action=AuditAction.PERMISSION_GRANTED.value,
        )
        logger.info(
            "Permission granted",
            extra={"tenant_id": str(self.uow.tenant_id), "user_id": str(user_id), "permission": permission_key},
        )
        return grant

    async def revoke(self, user_id: uuid.UUID, permission_key: str) -> List[PermissionGrant]:
        """Revoke one key. Returns the grants revoked (empty if none was active)."""
        _check_keys([permission_key])
        existing = await self._active(user_id, [permission_key])
        await self._validate_user(user_id)
        if not existing:
            return []

        revoked = await self.uow.update(
            PermissionGrant,
            {"id": [grant.id for grant in existing]},
            {"revoked_at": self.uow.clock(), "revoked_by": self.uow.principal.user_id},
            permission=MANAGE_PERMISSION,
            action=AuditAction.PERMISSION_REVOKED.value,
        )
        logger.info(
            "Permission revoked",
            extra={"tenant_id": str(self.uow.tenant_id), "user_id": str(user_id), "permission": permission_key},
        )
        return revoked

    async def replace(self, user_id: uuid.UUID, permission_keys: Iterable[str]) -> List[str]:
        """
        Make the user's active grants exactly `permission_keys`.

        Keys not in the set are revoked and missing keys are granted; keys
        that stay unchanged produce no audit entries.

        Returns:
            The resulting active keys, sorted
        """
        wanted = set(_check_keys(permission_keys))
        current = set(await self.active_keys(user_id))

        for key in sorted(current - wanted):
            await self.revoke(user_id, key)
        for key in sorted(wanted - current):
            await self.grant(user_id, key)
        return sorted(wanted)
