"""
Identity Core - principals and access tokens.
"""

from clinicguard.kernel.identity.principal import Principal, require_principal
from clinicguard.kernel.identity.jwt import (
    JWTManager,
    AccessTokenPayload,
    create_access_token,
    verify_access_token,
)

__all__ = [
    "Principal",
    "require_principal",
    "JWTManager",
    "AccessTokenPayload",
    "create_access_token",
    "verify_access_token",
]
