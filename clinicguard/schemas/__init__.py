"""
Pydantic schemas for API request/response validation.
"""

from clinicguard.schemas.common import ErrorResponse, HealthResponse, PaginatedResponse
from clinicguard.schemas.audit import AuditEntryResponse
from clinicguard.schemas.features import FeatureListResponse, FeatureState, FeatureUpdate
from clinicguard.schemas.permissions import UserPermissionsResponse, UserPermissionsUpdate
from clinicguard.schemas.integrity import IntegritySweepRequest, IntegritySweepResponse

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "PaginatedResponse",
    "AuditEntryResponse",
    "FeatureListResponse",
    "FeatureState",
    "FeatureUpdate",
    "UserPermissionsResponse",
    "UserPermissionsUpdate",
    "IntegritySweepRequest",
    "IntegritySweepResponse",
]
