"""
Tenant unit of work.

The single place that enforces the order of a mutation:

    permission gate -> reference validation -> scoped write -> audit entry

The write and its audit entry share one transaction. Leaving the context
without an error commits both; any error rolls both back.
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinicguard.config import Settings, get_settings
from clinicguard.kernel.audit import AuditEntryCreate, AuditOrigin, AuditRecorder
from clinicguard.kernel.audit.recorder import Clock, utc_now
from clinicguard.kernel.errors import AuditWriteFailed
from clinicguard.kernel.identity.principal import Principal
from clinicguard.kernel.models.audit_entry import AuditAction
from clinicguard.kernel.permissions.gate import PermissionKeys, TenantFeatures, require_permission
from clinicguard.kernel.tenancy.executor import ScopedQueryExecutor, row_snapshot
from clinicguard.kernel.tenancy.references import ReferenceValidator, ResourceReference
from clinicguard.kernel.tenancy.registry import EntityLike, EntityRegistry, get_registry
from clinicguard.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Serialization failure and deadlock (PostgreSQL SQLSTATE)
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def is_transient_storage_error(exc: BaseException) -> bool:
    """Whether retrying the whole unit of work may succeed."""
    if isinstance(exc, AuditWriteFailed):
        exc = exc.__cause__
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated or isinstance(exc, OperationalError):
        return True
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in _RETRYABLE_SQLSTATES


async def with_storage_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: Optional[int] = None,
    backoff: Optional[float] = None,
) -> T:
    """
    Run `operation`, retrying transient storage errors with exponential backoff.

    Authorization, reference and configuration errors are never retried.
    """
    settings = get_settings()
    attempts = attempts or settings.storage_retry_attempts
    backoff = settings.storage_retry_backoff if backoff is None else backoff

    for attempt in range(attempts - 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_transient_storage_error(exc):
                raise
            wait = backoff * (2 ** attempt)
            logger.warning(
                "Transient storage error, retrying",
                extra={"attempt": attempt + 1, "wait_seconds": wait, "error": str(exc)},
            )
            await asyncio.sleep(wait)
    return await operation()


class TenantUnitOfWork:
    """
    Gated, validated and audited writes for one principal in one transaction.

    Usage:
        async with TenantUnitOfWork(session, principal, features, origin) as uow:
            visit = await uow.insert(
                "visit",
                {"patient_id": patient_id, "doctor_id": principal.user_id},
                permission="clinical.visit.create",
            )
    """

    def __init__(
        self,
        session: AsyncSession,
        principal: Optional[Principal],
        features: Optional[TenantFeatures] = None,
        origin: Optional[AuditOrigin] = None,
        *,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        registry: Optional[EntityRegistry] = None,
    ):
        self.registry = registry or get_registry()
        self.executor = ScopedQueryExecutor(session, principal, self.registry)
        self.principal: Principal = principal
        self.session = session
        self.features = features
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self.validator = ReferenceValidator(session, self.registry)
        self.recorder = AuditRecorder(session, self.settings, self.clock)

        origin = origin or AuditOrigin()
        if principal.acting_as_operator:
            origin = origin.model_copy(update={"operator": True})
        self.origin = origin

    @property
    def tenant_id(self):
        return self.executor.tenant_id

    async def __aenter__(self) -> "TenantUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            await self.session.rollback()
            return False
        # A cancelled request must not split a write from its audit entry:
        # the commit runs to completion and the session settles before the
        # cancellation propagates.
        commit = asyncio.ensure_future(self.session.commit())
        try:
            await asyncio.shield(commit)
        except asyncio.CancelledError:
            await asyncio.wait({commit})
            if commit.exception() is not None:
                await self.session.rollback()
            raise
        except Exception:
            await self.session.rollback()
            raise
        return False

    @classmethod
    async def run(
        cls,
        session_maker: async_sessionmaker,
        principal: Principal,
        work: Callable[["TenantUnitOfWork"], Awaitable[T]],
        *,
        features: Optional[TenantFeatures] = None,
        origin: Optional[AuditOrigin] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> T:
        """Run `work` in a fresh session and unit of work, retrying transient failures."""
        settings = settings or get_settings()

        async def attempt() -> T:
            async with session_maker() as session:
                async with cls(session, principal, features, origin, settings=settings, clock=clock) as uow:
                    return await work(uow)

        return await with_storage_retry(
            attempt,
            attempts=settings.storage_retry_attempts,
            backoff=settings.storage_retry_backoff,
        )

    # Reads

    async def select(
        self,
        entity: EntityLike,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        permission: PermissionKeys,
        audit_access: Optional[str] = None,
        **options: Any,
    ) -> List[Any]:
        """
        Gated tenant read.

        With `audit_access` (e.g. "view"), each returned row gets a
        `clinical_<audit_access>` entry committed with the unit of work.
        """
        require_permission(self.principal, permission, self.features)
        rows = await self.executor.select(entity, filters, **options)
        if audit_access:
            for row in rows:
                await self.recorder.record_access(
                    self.principal, row.__entity_name__, row.id, audit_access, self.origin
                )
        return rows

    # Writes

    async def insert(
        self,
        entity: EntityLike,
        values: Mapping[str, Any],
        *,
        permission: PermissionKeys,
        references: Iterable[ResourceReference] = (),
        action: Optional[str] = None,
    ) -> Any:
        require_permission(self.principal, permission, self.features)
        await self._validate(entity, values, references)

        row = await self.executor.insert(entity, values)
        await self._audit(action or AuditAction.CREATE.value, row, None, row_snapshot(row))
        return row

    async def update(
        self,
        entity: EntityLike,
        filters: Mapping[str, Any],
        values: Mapping[str, Any],
        *,
        permission: PermissionKeys,
        references: Iterable[ResourceReference] = (),
        action: Optional[str] = None,
    ) -> List[Any]:
        require_permission(self.principal, permission, self.features)
        await self._validate(entity, values, references)

        current = await self.executor.select(entity, filters, for_update=True)
        before = {row.id: row_snapshot(row) for row in current}

        rows = await self.executor.update(entity, filters, values)
        for row in rows:
            await self._audit(action or AuditAction.UPDATE.value, row, before.get(row.id), row_snapshot(row))
        return rows

    async def delete(
        self,
        entity: EntityLike,
        filters: Mapping[str, Any],
        *,
        permission: PermissionKeys,
        action: Optional[str] = None,
    ) -> List[Any]:
        require_permission(self.principal, permission, self.features)

        current = await self.executor.select(entity, filters, for_update=True)
        before = {row.id: row_snapshot(row) for row in current}

        rows = await self.executor.delete(entity, filters)
        for row in rows:
            await self._audit(action or AuditAction.DELETE.value, row, before.get(row.id), None)
        return rows

    async def _validate(
        self,
        entity: EntityLike,
        values: Mapping[str, Any],
        references: Iterable[ResourceReference],
    ) -> None:
        refs = self.validator.references_from_payload(entity, values)
        refs.extend(references)
        if refs:
            await self.validator.validate_references(self.principal, refs, lock=True)

    async def _audit(self, action: str, row: Any, before: Any, after: Any) -> None:
        await self.recorder.record(
            AuditEntryCreate(
                tenant_id=self.tenant_id,
                user_id=self.principal.user_id,
                action=action,
                resource_type=row.__entity_name__,
                resource_id=row.id,
                before_value=before,
                after_value=after,
                origin=self.origin,
                occurred_at=self.clock(),
            )
        )
