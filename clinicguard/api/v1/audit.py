"""
Audit trail endpoints.
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query

from clinicguard.api.deps import CurrentPrincipal, DbSession, Features, target_principal
from clinicguard.config import get_settings
from clinicguard.kernel.audit import AuditLogFilters, AuditRecorder, Pagination
from clinicguard.kernel.permissions.gate import require_permission
from clinicguard.schemas.audit import AuditEntryResponse
from clinicguard.schemas.common import PaginatedResponse

router = APIRouter()


@router.get("", response_model=PaginatedResponse[AuditEntryResponse])
async def list_audit_entries(
    principal: CurrentPrincipal,
    features: Features,
    db: DbSession,
    user_id: Optional[uuid.UUID] = Query(None),
    resource_type: Optional[str] = Query(None, max_length=50),
    resource_id: Optional[uuid.UUID] = Query(None),
    action: Optional[str] = Query(None, max_length=100),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    tenant_id: Optional[uuid.UUID] = Query(None, description="Operators only: clinic to read"),
):
    """Audit entries of the clinic, newest first."""
    acting = target_principal(principal, tenant_id)
    require_permission(acting, "admin.audit", features)

    filters = AuditLogFilters(
        user_id=user_id,
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        since=since,
        until=until,
    )
    limit = min(limit, get_settings().audit_page_max)
    recorder = AuditRecorder(db)
    entries = await recorder.get_audit_log(acting.tenant_id, filters, Pagination(limit=limit, offset=offset))
    total = await recorder.count(acting.tenant_id, filters)

    return PaginatedResponse[AuditEntryResponse].create(
        items=[AuditEntryResponse.model_validate(entry) for entry in entries],
        total=total,
        limit=limit,
        offset=offset,
    )
