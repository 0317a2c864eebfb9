"""
User permission endpoints (explicit grants on top of role defaults).
"""

import uuid

from fastapi import APIRouter

from clinicguard.api.deps import (
    CurrentPrincipal,
    DbSession,
    Features,
    Origin,
    RequirePermissionAdmin,
)
from clinicguard.kernel.identity.identity_service import IdentityService
from clinicguard.kernel.permissions.gate import effective_permissions
from clinicguard.kernel.permissions.grant_service import PermissionGrantService
from clinicguard.kernel.unit_of_work import TenantUnitOfWork
from clinicguard.schemas.permissions import UserPermissionsResponse, UserPermissionsUpdate

router = APIRouter()


async def _describe(uow: TenantUnitOfWork, user_id: uuid.UUID, granted, features) -> UserPermissionsResponse:
    subject = await IdentityService(uow.session).load_principal(user_id, uow.tenant_id)
    roles = sorted(subject.roles) if subject else []
    return UserPermissionsResponse(
        user_id=user_id,
        roles=roles,
        granted=sorted(granted),
        effective=effective_permissions(subject, features) if subject else [],
    )


@router.get("/{user_id}/permissions", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: uuid.UUID,
    _: RequirePermissionAdmin,
    principal: CurrentPrincipal,
    features: Features,
    db: DbSession,
):
    """Explicit grants and effective permissions of a user of this clinic."""
    async with TenantUnitOfWork(db, principal, features) as uow:
        granted = await PermissionGrantService(uow).active_keys(user_id)
        return await _describe(uow, user_id, granted, features)


@router.put("/{user_id}/permissions", response_model=UserPermissionsResponse)
async def replace_user_permissions(
    user_id: uuid.UUID,
    data: UserPermissionsUpdate,
    _: RequirePermissionAdmin,
    principal: CurrentPrincipal,
    features: Features,
    origin: Origin,
    db: DbSession,
):
    """Make the user's explicit grants exactly the submitted set."""
    async with TenantUnitOfWork(db, principal, features, origin) as uow:
        granted = await PermissionGrantService(uow).replace(user_id, data.permissions)
        return await _describe(uow, user_id, granted, features)
