"""
FastAPI dependencies for authentication, authorization, and database sessions.
"""

import uuid
from typing import Annotated, Iterable, Optional, Union

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from clinicguard.config import get_settings
from clinicguard.database import async_session_maker
from clinicguard.kernel.audit import AuditOrigin
from clinicguard.kernel.errors import PermissionDenied
from clinicguard.kernel.features import FeatureFlagService
from clinicguard.kernel.identity.identity_service import IdentityService
from clinicguard.kernel.identity.principal import Principal
from clinicguard.kernel.permissions.gate import TenantFeatures, require_permission


# Security scheme
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncSession:
    """Dependency that yields database sessions."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_principal(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: DbSession,
) -> Principal:
    """Principal of the bearer token, or 401."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    principal = await IdentityService(db).principal_from_token(
        credentials.credentials, origin=get_audit_origin(request)
    )
    if principal is None:
        # Keep any auth.failure entry; the request ends here.
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.tenant_id = str(principal.tenant_id)
    request.state.user_id = str(principal.user_id)
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_principal)]


async def get_features(principal: CurrentPrincipal, db: DbSession) -> TenantFeatures:
    """Feature snapshot of the principal's clinic."""
    return await FeatureFlagService(db).load_features(principal.tenant_id)


Features = Annotated[TenantFeatures, Depends(get_features)]


def get_request_id(request: Request) -> Optional[str]:
    """Get request correlation ID (set by RequestContextMiddleware)."""
    return getattr(request.state, "request_id", None)


def get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    """Extract user agent from request."""
    return request.headers.get("User-Agent")


def get_audit_origin(request: Request) -> AuditOrigin:
    """Request metadata stored with every audit entry written for this request."""
    return AuditOrigin(
        request_id=get_request_id(request),
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )


Origin = Annotated[AuditOrigin, Depends(get_audit_origin)]


def is_operator(principal: Principal) -> bool:
    return principal.has_role(*get_settings().bypass_roles)


def target_principal(principal: Principal, tenant_id: Optional[uuid.UUID]) -> Principal:
    """
    Principal to act with for `tenant_id`.

    Naming another clinic requires an operator and yields an explicit
    operator principal for that clinic; the acting tenant never comes from
    the request body otherwise.
    """
    if tenant_id is None or tenant_id == principal.tenant_id:
        return principal
    return principal.for_operator(tenant_id)


class PermissionChecker:
    """
    Dependency class for checking permission keys against the gate.

    Usage:
        @router.get("/{user_id}/permissions")
        async def get_user_permissions(
            user_id: uuid.UUID,
            _: Annotated[bool, Depends(PermissionChecker("admin.permissions"))],
            principal: CurrentPrincipal,
            db: DbSession,
        ):
            ...
    """

    def __init__(self, keys: Union[str, Iterable[str]]):
        self.keys = keys if isinstance(keys, str) else tuple(keys)

    async def __call__(self, principal: CurrentPrincipal, features: Features) -> bool:
        require_permission(principal, self.keys, features)
        return True


# Convenience permission dependencies
RequirePermissionAdmin = Annotated[bool, Depends(PermissionChecker("admin.permissions"))]


async def require_operator(principal: CurrentPrincipal) -> Principal:
    """Require an operator (bypass role) principal."""
    if not is_operator(principal):
        raise PermissionDenied("operator", reason="operator_required")
    return principal


OperatorPrincipal = Annotated[Principal, Depends(require_operator)]
