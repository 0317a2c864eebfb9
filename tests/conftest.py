"""
Pytest fixtures for clinicguard tests.

Every test gets its own file-based SQLite database (in-memory databases are
per-connection, and the kernel opens more than one session per test).
"""

import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Iterable

# Environment must be set before clinicguard.config is first imported.
_tmp_dir = tempfile.mkdtemp(prefix="clinicguard-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_tmp_dir, 'app.db')}"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-0123456789"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from clinicguard.config import get_settings

get_settings.cache_clear()

from clinicguard.kernel.identity.jwt import JWTManager
from clinicguard.kernel.identity.principal import Principal
from clinicguard.kernel.models import Base, Clinic, Patient, User
from clinicguard.kernel.permissions.catalog import OPTIONAL_FEATURES
from clinicguard.kernel.permissions.gate import TenantFeatures


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Create a test database engine on a fresh SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()


async def _add(session: AsyncSession, row):
    session.add(row)
    await session.commit()
    await session.refresh(row)
    return row


# Clinics

@pytest_asyncio.fixture
async def clinic_a(db_session: AsyncSession) -> Clinic:
    return await _add(db_session, Clinic(name="Northside Pediatrics"))


@pytest_asyncio.fixture
async def clinic_b(db_session: AsyncSession) -> Clinic:
    return await _add(db_session, Clinic(name="Harbor Family Clinic"))


@pytest_asyncio.fixture
async def ops_clinic(db_session: AsyncSession) -> Clinic:
    """Home clinic of the platform operators."""
    return await _add(db_session, Clinic(name="Platform Operations"))


# Staff

def _user(clinic: Clinic, email: str, name: str, roles: Iterable[str]) -> User:
    return User(
        id=uuid.uuid4(),
        tenant_id=clinic.id,
        email=email,
        full_name=name,
        roles=list(roles),
    )


@pytest_asyncio.fixture
async def doctor_a(db_session: AsyncSession, clinic_a: Clinic) -> User:
    return await _add(db_session, _user(clinic_a, "doctor@northside.example", "Dr. Amal Haddad", ["Doctor"]))


@pytest_asyncio.fixture
async def owner_a(db_session: AsyncSession, clinic_a: Clinic) -> User:
    return await _add(db_session, _user(clinic_a, "owner@northside.example", "Rina Okafor", ["Owner"]))


@pytest_asyncio.fixture
async def staff_a(db_session: AsyncSession, clinic_a: Clinic) -> User:
    return await _add(db_session, _user(clinic_a, "desk@northside.example", "Luis Ortega", ["Staff"]))


@pytest_asyncio.fixture
async def doctor_b(db_session: AsyncSession, clinic_b: Clinic) -> User:
    return await _add(db_session, _user(clinic_b, "doctor@harbor.example", "Dr. Jonas Berg", ["Doctor"]))


@pytest_asyncio.fixture
async def operator(db_session: AsyncSession, ops_clinic: Clinic) -> User:
    return await _add(db_session, _user(ops_clinic, "ops@platform.example", "Platform Operator", ["SuperAdmin"]))


# Patients

@pytest_asyncio.fixture
async def patient_a(db_session: AsyncSession, clinic_a: Clinic) -> Patient:
    return await _add(db_session, Patient(tenant_id=clinic_a.id, full_name="Mia Svensson"))


@pytest_asyncio.fixture
async def patient_b(db_session: AsyncSession, clinic_b: Clinic) -> Patient:
    return await _add(db_session, Patient(tenant_id=clinic_b.id, full_name="Noah Lindqvist"))


# Principals, features, clock

@pytest.fixture
def principal_of() -> Callable[..., Principal]:
    """Build the Principal of a user row, optionally with explicit grants."""

    def build(user: User, permissions: Iterable[str] = ()) -> Principal:
        return Principal.build(
            tenant_id=user.tenant_id,
            user_id=user.id,
            roles=user.roles,
            permissions=permissions,
        )

    return build


@pytest.fixture
def features_of() -> Callable[..., TenantFeatures]:
    """Feature snapshot for a clinic; all optional features unless names are given."""

    def build(tenant_id: uuid.UUID, *names: str) -> TenantFeatures:
        enabled = set(names) if names else set(OPTIONAL_FEATURES)
        enabled.update(get_settings().core_features)
        return TenantFeatures(tenant_id=tenant_id, enabled=frozenset(enabled))

    return build


class TickingClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock(datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def jwt_manager() -> JWTManager:
    """Create a JWT manager for tests."""
    return JWTManager(
        secret_key="test-secret-key-for-testing-only-0123456789",
        algorithm="HS256",
        access_token_expire_minutes=30,
    )


@pytest.fixture
def auth_headers_for(jwt_manager: JWTManager) -> Callable[[User], dict]:
    """Authorization headers for a user row."""

    def build(user: User) -> dict:
        token, _, _ = jwt_manager.create_access_token(
            user_id=user.id,
            tenant_id=user.tenant_id,
            roles=user.roles,
        )
        return {"Authorization": f"Bearer {token}"}

    return build
