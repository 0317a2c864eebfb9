"""
Integrity sweep schemas.
"""

import uuid
from typing import Dict, Optional

from pydantic import BaseModel

from clinicguard.kernel.tenancy.integrity import IntegrityReport


class IntegritySweepRequest(BaseModel):
    tenant_id: Optional[uuid.UUID] = None  # operators only
    check_audit: bool = True


class IntegritySweepResponse(BaseModel):
    ok: bool
    report: IntegrityReport
    stats: Dict[str, int] = {}
