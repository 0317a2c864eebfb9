"""
Clinic (tenant) model.
"""

import uuid

from sqlalchemy import Boolean, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from clinicguard.kernel.models.base import Base, TimestampMixin, generate_uuid


class Clinic(Base, TimestampMixin):
    """One clinic: the isolated data partition every scoped row belongs to."""

    __tablename__ = "clinics"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Clinic {self.name}>"
