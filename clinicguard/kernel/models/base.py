"""
Base model with common fields and utilities.
"""

import uuid
from datetime import datetime
from typing import ClassVar

from sqlalchemy import DateTime, ForeignKey, event, func, inspect, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from clinicguard.kernel.errors import TenantMismatch


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    # Use generic Uuid type for cross-database compatibility
    type_annotation_map = {
        uuid.UUID: Uuid(),
    }


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class TenantScopedMixin:
    """
    Mixin for rows that belong to exactly one clinic.

    The tenant id is set once at creation and never changes. Every
    tenant-scoped model declares the name it is known by in references,
    audit entries and integrity reports.
    """

    __entity_name__: ClassVar[str]

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("clinics.id"),
        nullable=False,
        index=True,
    )


@event.listens_for(TenantScopedMixin, "before_update", propagate=True)
def _forbid_tenant_change(mapper, connection, target) -> None:
    history = inspect(target).attrs.tenant_id.history
    if history.deleted and history.added and history.deleted[0] != history.added[0]:
        raise TenantMismatch(
            "tenant_id is immutable once a row is created",
            entity=getattr(target, "__entity_name__", mapper.class_.__name__),
        )


def generate_uuid() -> uuid.UUID:
    """Generate a new UUID."""
    return uuid.uuid4()
