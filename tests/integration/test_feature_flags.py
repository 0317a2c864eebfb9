"""Integration tests for per-clinic feature flags."""

import pytest

from clinicguard.kernel.audit import AuditLogFilters, AuditOrigin, AuditRecorder
from clinicguard.kernel.errors import CoreFeatureLocked, ScopingConfigurationError
from clinicguard.kernel.features import FeatureFlagService
from clinicguard.kernel.permissions.gate import check_permission


@pytest.fixture
def service(db_session, clock):
    return FeatureFlagService(db_session, clock=clock)


class TestFeatureState:
    """Tests for reading flags."""

    @pytest.mark.asyncio
    async def test_optional_feature_disabled_by_default(self, service, clinic_a):
        assert await service.is_feature_enabled(clinic_a.id, "laboratory") is False

    @pytest.mark.asyncio
    async def test_core_feature_always_enabled(self, service, clinic_a):
        assert await service.is_feature_enabled(clinic_a.id, "patients") is True
        snapshot = await service.load_features(clinic_a.id)
        assert snapshot.enabled == frozenset({"patients", "visits"})

    @pytest.mark.asyncio
    async def test_flags_are_per_clinic(self, db_session, service, clinic_a, clinic_b, operator):
        await service.set_feature(clinic_a.id, "laboratory", True, changed_by=operator.id)
        await db_session.commit()

        assert await service.is_feature_enabled(clinic_a.id, "laboratory") is True
        assert await service.is_feature_enabled(clinic_b.id, "laboratory") is False
        assert "laboratory" in (await service.load_features(clinic_a.id)).enabled
        assert "laboratory" not in (await service.load_features(clinic_b.id)).enabled

    @pytest.mark.asyncio
    async def test_list_features(self, db_session, service, clinic_a, operator):
        await service.set_feature(clinic_a.id, "billing", True, changed_by=operator.id)
        await db_session.commit()

        states = {state["feature_name"]: state for state in await service.list_features(clinic_a.id)}
        assert states["billing"]["enabled"] is True
        assert states["billing"]["changed_by"] == operator.id
        assert states["laboratory"]["enabled"] is False
        assert states["laboratory"]["changed_at"] is None
        assert states["patients"] == {
            "feature_name": "patients",
            "enabled": True,
            "core": True,
            "changed_by": None,
            "changed_at": None,
        }


class TestFeatureGate:
    """Flags drive the permission gate."""

    @pytest.mark.asyncio
    async def test_lab_results_follow_laboratory_flag(
        self, db_session, service, clinic_a, doctor_a, operator, principal_of
    ):
        doctor = principal_of(doctor_a)

        decision = check_permission(doctor, "lab.results", await service.load_features(clinic_a.id))
        assert not decision.allowed
        assert decision.missing_permission == "lab.results"

        await service.set_feature(clinic_a.id, "laboratory", True, changed_by=operator.id)
        await db_session.commit()

        assert check_permission(doctor, "lab.results", await service.load_features(clinic_a.id)).allowed


class TestSetFeature:
    """Tests for toggling flags."""

    @pytest.mark.asyncio
    async def test_core_feature_cannot_be_disabled(self, service, clinic_a, operator):
        with pytest.raises(CoreFeatureLocked):
            await service.set_feature(clinic_a.id, "patients", False, changed_by=operator.id)

    @pytest.mark.asyncio
    async def test_unknown_feature(self, service, clinic_a, operator):
        with pytest.raises(ScopingConfigurationError):
            await service.set_feature(clinic_a.id, "teleportation", True, changed_by=operator.id)

    @pytest.mark.asyncio
    async def test_every_change_is_audited(self, db_session, service, clinic_a, operator, clock):
        enabled = await service.set_feature(
            clinic_a.id, "laboratory", True, changed_by=operator.id, origin=AuditOrigin(operator=True)
        )
        await service.set_feature(clinic_a.id, "laboratory", False, changed_by=operator.id)
        await db_session.commit()

        entries = await AuditRecorder(db_session, clock=clock).get_audit_log(
            clinic_a.id, AuditLogFilters(resource_type="tenant_feature")
        )
        assert [entry.action for entry in entries] == ["feature.disabled", "feature.enabled"]
        disabled, first = entries
        assert disabled.resource_id == enabled.id
        assert disabled.before_value["enabled"] is True
        assert disabled.after_value["enabled"] is False
        assert first.before_value is None
        assert first.origin["operator"] is True
        assert first.user_id == operator.id
