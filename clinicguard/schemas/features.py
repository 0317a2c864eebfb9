"""
Feature flag schemas.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class FeatureState(BaseModel):
    feature_name: str
    enabled: bool
    core: bool = False
    changed_by: Optional[uuid.UUID] = None
    changed_at: Optional[datetime] = None


class FeatureListResponse(BaseModel):
    tenant_id: uuid.UUID
    features: List[FeatureState]


class FeatureUpdate(BaseModel):
    """Enable or disable one feature. Operators name the target clinic."""

    feature_name: str = Field(..., min_length=1, max_length=100)
    enabled: bool
    tenant_id: Optional[uuid.UUID] = None
