"""Integration tests for explicit permission grants."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from clinicguard.kernel.errors import CrossTenantReference, PermissionDenied, UnknownPermission
from clinicguard.kernel.identity.identity_service import IdentityService
from clinicguard.kernel.models import AuditEntry, PermissionGrant
from clinicguard.kernel.permissions.grant_service import PermissionGrantService
from clinicguard.kernel.unit_of_work import TenantUnitOfWork


async def _with_grants(session_maker, principal, features, clock, call):
    async with session_maker() as session:
        async with TenantUnitOfWork(session, principal, features, clock=clock) as uow:
            return await call(PermissionGrantService(uow))


async def _actions(session_maker, tenant_id):
    async with session_maker() as session:
        query = (
            select(AuditEntry.action)
            .where(AuditEntry.tenant_id == tenant_id, AuditEntry.resource_type == "permission_grant")
            .order_by(AuditEntry.occurred_at)
        )
        return list((await session.execute(query)).scalars().all())


@pytest.fixture
def owner_context(owner_a, principal_of, features_of):
    return principal_of(owner_a), features_of(owner_a.tenant_id)


class TestGrantAndRevoke:
    """Tests for single-key grant and revoke."""

    @pytest.mark.asyncio
    async def test_grant_is_audited_and_idempotent(self, session_maker, owner_context, staff_a, clock):
        principal, features = owner_context

        grant = await _with_grants(
            session_maker, principal, features, clock, lambda svc: svc.grant(staff_a.id, "clinical.visit.view")
        )
        again = await _with_grants(
            session_maker, principal, features, clock, lambda svc: svc.grant(staff_a.id, "clinical.visit.view")
        )

        assert again.id == grant.id
        assert grant.granted_by == principal.user_id
        assert grant.tenant_id == staff_a.tenant_id
        assert await _actions(session_maker, staff_a.tenant_id) == ["permission.granted"]

    @pytest.mark.asyncio
    async def test_revoke_keeps_history(self, session_maker, owner_context, staff_a, clock):
        principal, features = owner_context
        await _with_grants(session_maker, principal, features, clock, lambda svc: svc.grant(staff_a.id, "admin.audit"))

        revoked = await _with_grants(
            session_maker, principal, features, clock, lambda svc: svc.revoke(staff_a.id, "admin.audit")
        )
        assert len(revoked) == 1
        assert revoked[0].revoked_by == principal.user_id
        assert revoked[0].is_active is False

        keys = await _with_grants(session_maker, principal, features, clock, lambda svc: svc.active_keys(staff_a.id))
        assert keys == []
        assert await _actions(session_maker, staff_a.tenant_id) == ["permission.granted", "permission.revoked"]

        async with session_maker() as session:
            rows = (await session.execute(select(PermissionGrant))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_revoke_without_grant_is_noop(self, session_maker, owner_context, staff_a, clock):
        principal, features = owner_context
        revoked = await _with_grants(
            session_maker, principal, features, clock, lambda svc: svc.revoke(staff_a.id, "admin.audit")
        )
        assert revoked == []
        assert await _actions(session_maker, staff_a.tenant_id) == []


class TestReplace:
    @pytest.mark.asyncio
    async def test_only_changes_are_audited(self, session_maker, owner_context, staff_a, clock):
        principal, features = owner_context
        await _with_grants(
            session_maker,
            principal,
            features,
            clock,
            lambda svc: svc.replace(staff_a.id, ["admin.audit", "clinical.visit.view"]),
        )

        result = await _with_grants(
            session_maker,
            principal,
            features,
            clock,
            lambda svc: svc.replace(staff_a.id, ["reports.export", "admin.audit"]),
        )

        assert result == ["admin.audit", "reports.export"]
        assert await _actions(session_maker, staff_a.tenant_id) == [
            "permission.granted",
            "permission.granted",
            "permission.revoked",
            "permission.granted",
        ]


class TestGrantBoundaries:
    """Grant management fails closed."""

    @pytest.mark.asyncio
    async def test_user_of_other_clinic_rejected(self, session_maker, owner_context, doctor_b, clock):
        principal, features = owner_context
        with pytest.raises(CrossTenantReference):
            await _with_grants(
                session_maker, principal, features, clock, lambda svc: svc.grant(doctor_b.id, "admin.audit")
            )
        with pytest.raises(CrossTenantReference):
            await _with_grants(session_maker, principal, features, clock, lambda svc: svc.active_keys(doctor_b.id))

    @pytest.mark.asyncio
    async def test_unknown_key_rejected(self, session_maker, owner_context, staff_a, clock):
        principal, features = owner_context
        with pytest.raises(UnknownPermission):
            await _with_grants(
                session_maker, principal, features, clock, lambda svc: svc.grant(staff_a.id, "admin.everything")
            )

    @pytest.mark.asyncio
    async def test_requires_admin_permissions(self, session_maker, staff_a, doctor_a, principal_of, features_of, clock):
        with pytest.raises(PermissionDenied) as exc_info:
            await _with_grants(
                session_maker,
                principal_of(staff_a),
                features_of(staff_a.tenant_id),
                clock,
                lambda svc: svc.grant(doctor_a.id, "admin.audit"),
            )
        assert exc_info.value.missing_permission == "admin.permissions"


class TestPrincipalLoading:
    """Grants reach the Principal only for their own clinic."""

    @pytest.mark.asyncio
    async def test_load_principal_reads_active_grants(self, session_maker, owner_context, staff_a, clock):
        principal, features = owner_context
        await _with_grants(
            session_maker, principal, features, clock, lambda svc: svc.replace(staff_a.id, ["admin.audit"])
        )

        async with session_maker() as session:
            loaded = await IdentityService(session).load_principal(staff_a.id, staff_a.tenant_id)
        assert loaded.permissions == frozenset({"admin.audit"})
        assert loaded.roles == frozenset({"Staff"})

    @pytest.mark.asyncio
    async def test_grant_stored_under_other_clinic_ignored(self, db_session, session_maker, staff_a, clinic_b):
        db_session.add(
            PermissionGrant(
                tenant_id=clinic_b.id,
                user_id=staff_a.id,
                permission_key="admin.audit",
                granted_by=staff_a.id,
                granted_at=datetime(2025, 3, 1, tzinfo=timezone.utc),
            )
        )
        await db_session.commit()

        async with session_maker() as session:
            service = IdentityService(session)
            loaded = await service.load_principal(staff_a.id, staff_a.tenant_id)
            assert loaded.permissions == frozenset()
            assert await service.load_principal(staff_a.id, clinic_b.id) is None
