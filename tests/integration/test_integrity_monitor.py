"""Integration tests for the integrity sweep."""

import uuid

import pytest

from clinicguard.kernel.audit import AuditRecorder
from clinicguard.kernel.identity.principal import Principal
from clinicguard.kernel.models.clinical import Visit
from clinicguard.kernel.tenancy.integrity import FindingKind, IntegrityMonitor
from clinicguard.kernel.tenancy.registry import Relationship
from clinicguard.kernel.unit_of_work import TenantUnitOfWork

VISIT_PATIENT = "visit.patient_id -> patient"


def _findings(report, kind):
    return [finding for finding in report.findings if finding.kind == kind]


class TestIntegritySweep:
    """Tests for run_integrity_sweep."""

    @pytest.mark.asyncio
    async def test_clean_clinic(self, session_maker, db_session, clinic_a, clock):
        owner = Principal.build(clinic_a.id, uuid.uuid4(), roles=["Owner"])
        async with session_maker() as session:
            async with TenantUnitOfWork(session, owner, clock=clock) as uow:
                patient = await uow.insert("patient", {"full_name": "Ella Moreau"}, permission="patient.add")
                await uow.insert("visit", {"patient_id": patient.id}, permission="clinical.visit.create")

        report = await IntegrityMonitor(db_session, clock=clock).run_integrity_sweep(clinic_a.id)

        assert report.ok
        assert report.relationships_checked > 0
        assert report.entities_checked > 0
        assert report.finished_at > report.started_at

    @pytest.mark.asyncio
    async def test_orphaned_reference(self, db_session, clinic_a, clinic_b):
        orphan = Visit(tenant_id=clinic_a.id, patient_id=uuid.uuid4())
        db_session.add_all([orphan, Visit(tenant_id=clinic_b.id, patient_id=uuid.uuid4())])
        await db_session.commit()

        report = await IntegrityMonitor(db_session).run_integrity_sweep(clinic_a.id, check_audit=False)

        orphaned = _findings(report, FindingKind.ORPHANED)
        assert len(orphaned) == 1
        assert orphaned[0].relationship == VISIT_PATIENT
        assert orphaned[0].count == 1
        assert orphaned[0].sample_ids == [orphan.id]

    @pytest.mark.asyncio
    async def test_cross_tenant_reference(self, db_session, clinic_a, patient_b):
        leak = Visit(tenant_id=clinic_a.id, patient_id=patient_b.id)
        db_session.add(leak)
        await db_session.commit()

        report = await IntegrityMonitor(db_session).run_integrity_sweep(clinic_a.id, check_audit=False)

        crossing = _findings(report, FindingKind.CROSS_TENANT)
        assert [finding.relationship for finding in crossing] == [VISIT_PATIENT]
        assert crossing[0].sample_ids == [leak.id]
        assert _findings(report, FindingKind.ORPHANED) == []

    @pytest.mark.asyncio
    async def test_unaudited_rows(self, db_session, clinic_a, patient_a):
        report = await IntegrityMonitor(db_session).run_integrity_sweep(clinic_a.id)

        unaudited = {finding.entity: finding for finding in _findings(report, FindingKind.UNAUDITED)}
        assert unaudited["patient"].sample_ids == [patient_a.id]
        assert "visit" not in unaudited

    @pytest.mark.asyncio
    async def test_read_and_auth_entries_do_not_count_as_audited(
        self, db_session, clinic_a, doctor_a, patient_a, clock
    ):
        recorder = AuditRecorder(db_session, clock=clock)
        reader = Principal.build(clinic_a.id, uuid.uuid4(), roles=["Doctor"])
        await recorder.record_access(reader, "patient", patient_a.id, "view")
        await recorder.record_auth(clinic_a.id, doctor_a.id, success=True)
        await db_session.commit()

        report = await IntegrityMonitor(db_session).run_integrity_sweep(clinic_a.id)

        unaudited = {finding.entity: finding for finding in _findings(report, FindingKind.UNAUDITED)}
        assert unaudited["patient"].sample_ids == [patient_a.id]
        assert doctor_a.id in unaudited["user"].sample_ids

    @pytest.mark.asyncio
    async def test_broken_check_becomes_error_finding(self, db_session, clinic_a, patient_a):
        relationships = [
            Relationship(source="visit", column="no_such_column", target="patient"),
            Relationship(source="ghost", column="patient_id", target="patient"),
            Relationship(source="visit", column="patient_id", target="patient"),
        ]

        report = await IntegrityMonitor(db_session).run_integrity_sweep(
            clinic_a.id, relationships=relationships, check_audit=False
        )

        errors = _findings(report, FindingKind.ERROR)
        assert [finding.entity for finding in errors] == ["visit", "ghost"]
        assert all(finding.error for finding in errors)
        assert report.relationships_checked == 3
        assert not report.ok


class TestTenantStats:
    @pytest.mark.asyncio
    async def test_counts_per_entity(self, db_session, clinic_a, doctor_a, owner_a, patient_a, patient_b):
        stats = await IntegrityMonitor(db_session).get_tenant_stats(clinic_a.id)
        assert stats["patient"] == 1
        assert stats["user"] == 2
        assert stats["visit"] == 0
