"""Integration tests for resolving access tokens into principals."""

import uuid

import pytest
from sqlalchemy import select

from clinicguard.kernel.audit import AuditOrigin
from clinicguard.kernel.identity.identity_service import IdentityService
from clinicguard.kernel.models import AuditEntry


async def _auth_entries(session_maker):
    async with session_maker() as session:
        query = select(AuditEntry).where(AuditEntry.action.like("auth.%"))
        return list((await session.execute(query)).scalars().all())


class TestPrincipalFromToken:
    @pytest.mark.asyncio
    async def test_active_user_resolves_without_entry(self, session_maker, doctor_a, jwt_manager):
        token, _, _ = jwt_manager.create_access_token(doctor_a.id, doctor_a.tenant_id, ["Owner"])

        async with session_maker() as session:
            principal = await IdentityService(session, jwt_manager).principal_from_token(token)
            await session.commit()

        assert principal.user_id == doctor_a.id
        assert principal.roles == frozenset({"Doctor"})
        assert await _auth_entries(session_maker) == []

    @pytest.mark.asyncio
    async def test_unknown_user_records_failure(self, session_maker, clinic_a, jwt_manager):
        ghost_id = uuid.uuid4()
        token, _, _ = jwt_manager.create_access_token(ghost_id, clinic_a.id, ["Owner"])

        async with session_maker() as session:
            service = IdentityService(session, jwt_manager)
            principal = await service.principal_from_token(token, AuditOrigin(ip_address="10.0.0.9"))
            await session.commit()

        assert principal is None
        entries = await _auth_entries(session_maker)
        assert len(entries) == 1
        assert entries[0].action == "auth.failure"
        assert entries[0].tenant_id == clinic_a.id
        assert entries[0].resource_type == "user"
        assert entries[0].resource_id == ghost_id
        assert entries[0].origin == {"ip_address": "10.0.0.9", "operator": False}

    @pytest.mark.asyncio
    async def test_inactive_user_records_failure(self, session_maker, db_session, staff_a, jwt_manager):
        staff_a.is_active = False
        await db_session.commit()
        token, _, _ = jwt_manager.create_access_token(staff_a.id, staff_a.tenant_id, ["Staff"])

        async with session_maker() as session:
            assert await IdentityService(session, jwt_manager).principal_from_token(token) is None
            await session.commit()

        entries = await _auth_entries(session_maker)
        assert [(entry.resource_id, entry.after_value) for entry in entries] == [
            (staff_a.id, {"reason": "user_not_found"})
        ]

    @pytest.mark.asyncio
    async def test_user_of_another_clinic_records_failure_there(
        self, session_maker, doctor_a, clinic_b, jwt_manager
    ):
        token, _, _ = jwt_manager.create_access_token(doctor_a.id, clinic_b.id, ["Doctor"])

        async with session_maker() as session:
            assert await IdentityService(session, jwt_manager).principal_from_token(token) is None
            await session.commit()

        entries = await _auth_entries(session_maker)
        assert [entry.tenant_id for entry in entries] == [clinic_b.id]

    @pytest.mark.asyncio
    async def test_unverifiable_token_records_nothing(self, session_maker, clinic_a, jwt_manager):
        async with session_maker() as session:
            assert await IdentityService(session, jwt_manager).principal_from_token("not-a-jwt") is None
            await session.commit()

        assert await _auth_entries(session_maker) == []
