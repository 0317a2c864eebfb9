"""
Integrity sweep endpoint.
"""

from fastapi import APIRouter

from clinicguard.api.deps import CurrentPrincipal, DbSession, Features, target_principal
from clinicguard.kernel.permissions.gate import require_permission
from clinicguard.kernel.tenancy.integrity import IntegrityMonitor
from clinicguard.schemas.integrity import IntegritySweepRequest, IntegritySweepResponse

router = APIRouter()


@router.post("/sweep", response_model=IntegritySweepResponse)
async def run_integrity_sweep(
    data: IntegritySweepRequest,
    principal: CurrentPrincipal,
    features: Features,
    db: DbSession,
):
    """Run a read-only integrity sweep over one clinic."""
    acting = target_principal(principal, data.tenant_id)
    require_permission(acting, "admin.integrity", features)

    monitor = IntegrityMonitor(db)
    report = await monitor.run_integrity_sweep(acting.tenant_id, check_audit=data.check_audit)
    stats = await monitor.get_tenant_stats(acting.tenant_id)
    return IntegritySweepResponse(ok=report.ok, report=report, stats=stats)
