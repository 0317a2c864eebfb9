"""
Audit trail schemas.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class AuditEntryResponse(BaseModel):
    """One audit entry as returned by the audit log endpoint."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    user_id: Optional[uuid.UUID]
    action: str
    resource_type: str
    resource_id: uuid.UUID
    before_value: Optional[Any] = None
    after_value: Optional[Any] = None
    truncated: bool = False
    origin: Dict[str, Any] = {}
    occurred_at: datetime
