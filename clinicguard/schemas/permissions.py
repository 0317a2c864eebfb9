"""
Permission grant schemas.
"""

import uuid
from typing import List

from pydantic import BaseModel, Field


class UserPermissionsResponse(BaseModel):
    """Explicit grants and the resulting effective permissions of a user."""

    user_id: uuid.UUID
    roles: List[str]
    granted: List[str]
    effective: List[str]


class UserPermissionsUpdate(BaseModel):
    """Replace the user's explicit grants with exactly this set."""

    permissions: List[str] = Field(default_factory=list)
