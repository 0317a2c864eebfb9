"""
Staff user model for identity management.
"""

import uuid
from enum import Enum
from typing import List

from sqlalchemy import Boolean, String, JSON, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clinicguard.kernel.models.base import Base, TenantScopedMixin, TimestampMixin, generate_uuid


class UserRole(str, Enum):
    """Staff roles known to the permission catalog."""
    SUPER_ADMIN = "SuperAdmin"  # operator level, spans clinics
    SUPER_USER = "Super User"
    OWNER = "Owner"
    ADMIN = "Admin"
    DOCTOR = "Doctor"
    NURSE = "Nurse"
    STAFF = "Staff"
    LAB_TECHNICIAN = "Lab Technician"


class User(Base, TenantScopedMixin, TimestampMixin):
    """Staff account. Belongs to exactly one clinic."""

    __tablename__ = "users"
    __entity_name__ = "user"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        index=True,
        nullable=False,
    )
    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    roles: Mapped[List[str]] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"
