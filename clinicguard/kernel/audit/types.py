"""
Audit entry payload schemas.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class AuditOrigin(BaseModel):
    """Where a mutation came from. Stored as the entry's `origin` JSON."""

    request_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    operator: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class AuditEntryCreate(BaseModel):
    """One audit record to append."""

    tenant_id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    action: str
    resource_type: str
    resource_id: uuid.UUID
    before_value: Optional[Any] = None
    after_value: Optional[Any] = None
    origin: AuditOrigin = Field(default_factory=AuditOrigin)
    occurred_at: Optional[datetime] = None  # taken from the recorder clock when unset


class AuditLogFilters(BaseModel):
    user_id: Optional[uuid.UUID] = None
    resource_type: Optional[str] = None
    resource_id: Optional[uuid.UUID] = None
    action: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None


class Pagination(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)
