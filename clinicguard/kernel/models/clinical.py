"""
Clinical entities the kernel scopes, validates and sweeps.

Only the columns the kernel needs are modelled here: identity, tenant and
the foreign keys that link entities together. Clinical content belongs to
the surrounding CRUD layer.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from clinicguard.kernel.models.base import Base, TenantScopedMixin, TimestampMixin, generate_uuid


class Patient(Base, TenantScopedMixin, TimestampMixin):
    __tablename__ = "patients"
    __entity_name__ = "patient"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    date_of_birth: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    contact_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)


class Appointment(Base, TenantScopedMixin, TimestampMixin):
    __tablename__ = "appointments"
    __entity_name__ = "appointment"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid)
    patient_id: Mapped[uuid.UUID] = mapped_column(Uuid(), ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(), ForeignKey("users.id"), nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="scheduled", nullable=False)


class Visit(Base, TenantScopedMixin, TimestampMixin):
    __tablename__ = "visits"
    __entity_name__ = "visit"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid)
    patient_id: Mapped[uuid.UUID] = mapped_column(Uuid(), ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(), ForeignKey("users.id"), nullable=True)
    appointment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(), ForeignKey("appointments.id"), nullable=True
    )
    chief_complaint: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="open", nullable=False)


class LabRequest(Base, TenantScopedMixin, TimestampMixin):
    __tablename__ = "lab_requests"
    __entity_name__ = "lab_request"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid)
    visit_id: Mapped[uuid.UUID] = mapped_column(Uuid(), ForeignKey("visits.id"), nullable=False, index=True)
    patient_id: Mapped[uuid.UUID] = mapped_column(Uuid(), ForeignKey("patients.id"), nullable=False)
    test_code: Mapped[str] = mapped_column(String(50), nullable=False)


class LabResult(Base, TenantScopedMixin, TimestampMixin):
    __tablename__ = "lab_results"
    __entity_name__ = "lab_result"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid)
    lab_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), ForeignKey("lab_requests.id"), nullable=False, index=True
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(Uuid(), ForeignKey("patients.id"), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class Invoice(Base, TenantScopedMixin, TimestampMixin):
    __tablename__ = "invoices"
    __entity_name__ = "invoice"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=generate_uuid)
    patient_id: Mapped[uuid.UUID] = mapped_column(Uuid(), ForeignKey("patients.id"), nullable=False, index=True)
    visit_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(), ForeignKey("visits.id"), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="draft", nullable=False)
