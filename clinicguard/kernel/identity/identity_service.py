"""
Identity service: builds the per-request Principal.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from clinicguard.kernel.audit.recorder import AuditRecorder
from clinicguard.kernel.audit.types import AuditOrigin
from clinicguard.kernel.identity.jwt import JWTManager, get_jwt_manager
from clinicguard.kernel.identity.principal import Principal
from clinicguard.kernel.models.permission import PermissionGrant
from clinicguard.kernel.models.user import User
from clinicguard.kernel.tenancy.executor import ScopedQueryExecutor
from clinicguard.logging_config import get_logger, get_security_logger

logger = get_logger(__name__)
security_logger = get_security_logger()


class IdentityService:
    """
    Resolves users and their explicit grants into a Principal.

    Roles come from the user row, not from the token, so a role change
    applies on the next request. Grants are read for the user's own clinic
    only.
    """

    def __init__(self, session: AsyncSession, jwt_manager: Optional[JWTManager] = None):
        self.session = session
        self.jwt_manager = jwt_manager or get_jwt_manager()

    async def get_user(self, user_id: uuid.UUID, tenant_id: uuid.UUID) -> Optional[User]:
        """Active user of the clinic, or None."""
        executor = ScopedQueryExecutor(self.session, Principal.build(tenant_id, None))
        rows = await executor.select(User, {"id": user_id, "is_active": True})
        return rows[0] if rows else None

    async def load_principal(self, user_id: uuid.UUID, tenant_id: uuid.UUID) -> Optional[Principal]:
        """
        Principal for `user_id` acting in `tenant_id`.

        Returns:
            The Principal, or None when the user does not exist in that
            clinic or is inactive
        """
        user = await self.get_user(user_id, tenant_id)
        if user is None:
            logger.info(
                "Principal not resolved",
                extra={"user_id": str(user_id), "tenant_id": str(tenant_id)},
            )
            return None

        executor = ScopedQueryExecutor(self.session, Principal.build(tenant_id, user_id))
        grants = await executor.select(PermissionGrant, {"user_id": user_id, "revoked_at": None})

        return Principal.build(
            tenant_id=tenant_id,
            user_id=user.id,
            roles=user.roles or [],
            permissions=[grant.permission_key for grant in grants],
        )

    async def principal_from_token(
        self, token: str, origin: Optional[AuditOrigin] = None
    ) -> Optional[Principal]:
        """
        Verify an access token and load the principal it names.

        A correctly signed token whose user is missing or inactive in its
        clinic appends an `auth.failure` entry to that clinic's trail (the
        caller commits it). Tokens that do not verify have no trustworthy
        clinic and only reach the security log.
        """
        payload = self.jwt_manager.verify_access_token(token)
        if payload is None:
            security_logger.warning("Access token rejected", extra={"reason": "invalid_token"})
            return None
        try:
            user_id = uuid.UUID(payload.sub)
            tenant_id = uuid.UUID(payload.tenant_id)
        except ValueError:
            security_logger.warning("Access token rejected", extra={"reason": "malformed_subject"})
            return None

        principal = await self.load_principal(user_id, tenant_id)
        if principal is None:
            await AuditRecorder(self.session).record_auth(
                tenant_id, user_id, success=False, reason="user_not_found", origin=origin
            )
        return principal

    def issue_access_token(self, user: User) -> tuple[str, datetime]:
        """Access token for a user row; returns (token, expires_at)."""
        token, expires_at, _ = self.jwt_manager.create_access_token(
            user_id=user.id,
            tenant_id=user.tenant_id,
            roles=list(user.roles or []),
        )
        return token, expires_at
