"""
Feature flag endpoints.

Any clinic admin with `admin.features` can read the flags of their own
clinic. Changing a flag is reserved to operators.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Query

from clinicguard.api.deps import (
    CurrentPrincipal,
    DbSession,
    Features,
    OperatorPrincipal,
    Origin,
    target_principal,
)
from clinicguard.kernel.errors import ReferenceNotFound
from clinicguard.kernel.features import FeatureFlagService
from clinicguard.kernel.models.tenant import Clinic
from clinicguard.kernel.permissions.gate import require_permission
from clinicguard.schemas.features import FeatureListResponse, FeatureState, FeatureUpdate

router = APIRouter()


@router.get("", response_model=FeatureListResponse)
async def list_features(
    principal: CurrentPrincipal,
    features: Features,
    db: DbSession,
    tenant_id: Optional[uuid.UUID] = Query(None, description="Operators only: clinic to read"),
):
    """Every known feature and whether it is enabled for the clinic."""
    acting = target_principal(principal, tenant_id)
    require_permission(acting, "admin.features", features)

    states = await FeatureFlagService(db).list_features(acting.tenant_id)
    return FeatureListResponse(
        tenant_id=acting.tenant_id,
        features=[FeatureState(**state) for state in states],
    )


@router.put("", response_model=FeatureState)
async def set_feature(
    data: FeatureUpdate,
    operator: OperatorPrincipal,
    origin: Origin,
    db: DbSession,
):
    """Enable or disable a feature for one clinic (operators only)."""
    acting = target_principal(operator, data.tenant_id)
    if await db.get(Clinic, acting.tenant_id) is None:
        raise ReferenceNotFound("clinic", acting.tenant_id)

    service = FeatureFlagService(db)
    row = await service.set_feature(
        acting.tenant_id,
        data.feature_name,
        data.enabled,
        changed_by=operator.user_id,
        origin=origin.model_copy(update={"operator": True}),
    )
    await db.commit()

    return FeatureState(
        feature_name=row.feature_name,
        enabled=row.enabled,
        core=False,
        changed_by=row.changed_by,
        changed_at=row.changed_at,
    )
