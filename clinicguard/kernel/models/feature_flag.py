"""
Per-clinic feature toggles.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from clinicguard.kernel.models.base import Base, TenantScopedMixin, generate_uuid


class TenantFeature(Base, TenantScopedMixin):
    """
    Whether an optional capability is available to one clinic.

    A feature with no row is disabled. Disabled features behave as if the
    permissions they gate were absent.
    """

    __tablename__ = "tenant_features"
    __entity_name__ = "tenant_feature"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    feature_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        nullable=True,
    )
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "feature_name", name="uq_tenant_features_name"),
    )

    def __repr__(self) -> str:
        return f"<TenantFeature {self.feature_name}={'on' if self.enabled else 'off'}>"
