"""
Immutable audit trail.

Every accepted mutation appends exactly one entry here, in the same
transaction as the mutation itself. Entries are never updated or deleted by
application code.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Index, JSON, String, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column

from clinicguard.kernel.errors import ImmutableRecordError
from clinicguard.kernel.models.base import Base, generate_uuid


class AuditAction(str, Enum):
    """Actions written by the kernel itself. Callers may use other strings."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    FEATURE_ENABLED = "feature.enabled"
    FEATURE_DISABLED = "feature.disabled"

    PERMISSION_GRANTED = "permission.granted"
    PERMISSION_REVOKED = "permission.revoked"

    AUTH_SUCCESS = "auth.success"
    AUTH_FAILURE = "auth.failure"


# Reads (`clinical_<access type>`) and authentication attempts; not mutations.
ACCESS_ACTION_PREFIX = "clinical_"
NON_MUTATION_PREFIXES = (ACCESS_ACTION_PREFIX, "auth.")


class AuditEntry(Base):
    """
    Immutable audit record of one mutation, clinical read or authentication attempt.

    This table is append-only - no updates or deletes allowed.
    """

    __tablename__ = "audit_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        nullable=False,
    )

    # Actor
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        nullable=True,  # System actions may not have a user
    )

    # What happened, and to which resource
    action: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    resource_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    resource_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        nullable=False,
    )

    # Values (JSON-safe, possibly summarized)
    before_value: Mapped[Optional[Any]] = mapped_column(
        JSON,
        nullable=True,
    )
    after_value: Mapped[Optional[Any]] = mapped_column(
        JSON,
        nullable=True,
    )
    truncated: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Request id, client address, user agent, operator marker
    origin: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )

    # Timestamp from the kernel clock (immutable)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_audit_entries_tenant_time", "tenant_id", "occurred_at"),
        Index("ix_audit_entries_tenant_resource", "tenant_id", "resource_type", "resource_id"),
        Index("ix_audit_entries_tenant_user_time", "tenant_id", "user_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditEntry {self.action} {self.resource_type}:{self.resource_id}>"


@event.listens_for(AuditEntry, "before_update")
def _forbid_audit_update(mapper, connection, target) -> None:
    raise ImmutableRecordError("Audit entries cannot be updated", audit_entry_id=str(target.id))


@event.listens_for(AuditEntry, "before_delete")
def _forbid_audit_delete(mapper, connection, target) -> None:
    raise ImmutableRecordError("Audit entries cannot be deleted", audit_entry_id=str(target.id))
