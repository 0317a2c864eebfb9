"""
API v1 routes.
"""

from fastapi import APIRouter

from clinicguard.api.v1 import audit, features, integrity, permissions

router = APIRouter()

router.include_router(audit.router, prefix="/audit", tags=["Audit"])
router.include_router(features.router, prefix="/features", tags=["Features"])
router.include_router(permissions.router, prefix="/users", tags=["Permissions"])
router.include_router(integrity.router, prefix="/integrity", tags=["Integrity"])
