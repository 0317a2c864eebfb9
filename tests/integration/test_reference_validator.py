"""Integration tests for cross-reference validation."""

import uuid

import pytest
from sqlalchemy import func, select

from clinicguard.kernel.errors import CrossTenantReference, ReferenceNotFound
from clinicguard.kernel.models import AuditEntry
from clinicguard.kernel.models.clinical import Visit
from clinicguard.kernel.tenancy.references import ReferenceValidator, ResourceReference
from clinicguard.kernel.unit_of_work import TenantUnitOfWork


@pytest.fixture
def validator(db_session):
    return ReferenceValidator(db_session)


class TestValidateReferences:
    """Every referenced row must exist in the acting clinic."""

    @pytest.mark.asyncio
    async def test_own_reference_passes(self, validator, doctor_a, patient_a, principal_of):
        await validator.validate_references(
            principal_of(doctor_a),
            [ResourceReference("patient", patient_a.id), ResourceReference("user", str(doctor_a.id))],
        )

    @pytest.mark.asyncio
    async def test_missing_reference(self, validator, doctor_a, principal_of):
        missing = uuid.uuid4()
        with pytest.raises(ReferenceNotFound) as exc_info:
            await validator.validate_references(principal_of(doctor_a), [ResourceReference("patient", missing)])
        assert exc_info.value.resource_id == missing

    @pytest.mark.asyncio
    async def test_malformed_id_is_not_found(self, validator, doctor_a, principal_of):
        with pytest.raises(ReferenceNotFound):
            await validator.validate_references(principal_of(doctor_a), [ResourceReference("patient", "abc")])

    @pytest.mark.asyncio
    async def test_cross_tenant_reference(self, validator, doctor_a, patient_b, principal_of):
        with pytest.raises(CrossTenantReference) as exc_info:
            await validator.validate_references(principal_of(doctor_a), [ResourceReference("patient", patient_b.id)])
        assert exc_info.value.entity == "patient"

    @pytest.mark.asyncio
    async def test_cross_tenant_reported_before_missing(self, validator, doctor_a, patient_b, principal_of):
        refs = [
            ResourceReference("patient", uuid.uuid4()),
            ResourceReference("patient", patient_b.id),
        ]
        with pytest.raises(CrossTenantReference):
            await validator.validate_references(principal_of(doctor_a), refs, lock=True)

    @pytest.mark.asyncio
    async def test_references_from_payload(self, validator):
        patient_id, doctor_id = uuid.uuid4(), uuid.uuid4()
        refs = validator.references_from_payload(
            "visit",
            {"patient_id": patient_id, "doctor_id": doctor_id, "appointment_id": None, "chief_complaint": "cough"},
        )
        assert set(refs) == {ResourceReference("patient", patient_id), ResourceReference("user", doctor_id)}


class TestRejectedMutation:
    """A rejected reference leaves no row and no audit entry behind."""

    @pytest.mark.asyncio
    async def test_visit_for_other_clinic_patient(
        self, session_maker, db_session, doctor_a, patient_b, principal_of, features_of, clinic_a
    ):
        principal = principal_of(doctor_a)

        with pytest.raises(CrossTenantReference):
            async with TenantUnitOfWork(db_session, principal, features_of(clinic_a.id)) as uow:
                await uow.insert(
                    "visit",
                    {"patient_id": patient_b.id, "doctor_id": doctor_a.id},
                    permission="clinical.visit.create",
                )

        async with session_maker() as session:
            visits = await session.execute(select(func.count(Visit.id)))
            entries = await session.execute(select(func.count(AuditEntry.id)))
            assert visits.scalar() == 0
            assert entries.scalar() == 0
