"""
Permission grant model for tenant-scoped RBAC.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from clinicguard.kernel.models.base import Base, TenantScopedMixin, generate_uuid


class PermissionGrant(Base, TenantScopedMixin):
    """
    Explicit permission given to a user beyond the defaults of their roles.

    A grant is only ever considered under its own tenant. Revocation keeps
    the row (revoked_at is set) so the grant history stays readable.
    """

    __tablename__ = "permission_grants"
    __entity_name__ = "permission_grant"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )

    # Subject (who has the permission)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    permission_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Grant metadata
    granted_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        nullable=False,
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Revocation
    revoked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    revoked_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_permission_grants_tenant_user", "tenant_id", "user_id"),
        Index("ix_permission_grants_key", "permission_key"),
    )

    def __repr__(self) -> str:
        return f"<PermissionGrant user={self.user_id} key={self.permission_key}>"

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None
