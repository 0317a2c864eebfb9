"""
Audit Recorder for the append-only audit trail.

Every accepted mutation appends exactly one entry, in the same transaction
as the mutation. The recorder only flushes; the unit of work commits both
together, so an entry can never outlive a rolled-back write and a write can
never commit without its entry.
"""

import enum
import json
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import and_, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clinicguard.config import Settings, get_settings
from clinicguard.kernel.audit.types import AuditEntryCreate, AuditLogFilters, AuditOrigin, Pagination
from clinicguard.kernel.errors import AuditWriteFailed
from clinicguard.kernel.identity.principal import Principal, require_principal
from clinicguard.kernel.models.audit_entry import ACCESS_ACTION_PREFIX, AuditAction, AuditEntry
from clinicguard.logging_config import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def serialize_value(value: Any) -> Any:
    """Convert a value to JSON-safe types. Keys and contents are kept as given."""
    if isinstance(value, dict):
        return {str(key): serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [serialize_value(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, enum.Enum):
        return serialize_value(value.value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class AuditRecorder:
    """
    Appends and reads audit entries.

    Usage:
        recorder = AuditRecorder(session)
        await recorder.record(AuditEntryCreate(
            tenant_id=principal.tenant_id,
            user_id=principal.user_id,
            action="update",
            resource_type="visit",
            resource_id=visit.id,
            before_value=before,
            after_value=after,
        ))
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.clock = clock or utc_now

    async def record(self, entry: AuditEntryCreate) -> AuditEntry:
        """
        Append one entry to the audit trail.

        Values larger than `audit_value_max_bytes` are replaced by a summary
        and the entry is flagged `truncated`; nothing is dropped silently.

        Raises:
            AuditWriteFailed: the entry could not be written
        """
        before, before_truncated = self._prepare(entry.before_value)
        after, after_truncated = self._prepare(entry.after_value)

        row = AuditEntry(
            tenant_id=entry.tenant_id,
            user_id=entry.user_id,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            before_value=before,
            after_value=after,
            truncated=before_truncated or after_truncated,
            origin=entry.origin.as_dict(),
            occurred_at=entry.occurred_at or self.clock(),
        )

        try:
            self.session.add(row)
            await self.session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "Audit write failed",
                extra={
                    "tenant_id": str(entry.tenant_id),
                    "action": entry.action,
                    "resource_type": entry.resource_type,
                    "resource_id": str(entry.resource_id),
                    "error": str(exc),
                },
            )
            raise AuditWriteFailed(
                f"Could not record audit entry for {entry.resource_type} {entry.resource_id}",
                action=entry.action,
            ) from exc

        logger.debug(
            "Audit entry recorded",
            extra={"audit_entry_id": str(row.id), "action": row.action, "truncated": row.truncated},
        )
        return row

    async def record_access(
        self,
        principal: Optional[Principal],
        resource_type: str,
        resource_id: uuid.UUID,
        access_type: str = "view",
        origin: Optional[AuditOrigin] = None,
    ) -> AuditEntry:
        """Append a `clinical_<access_type>` entry for a read of one resource."""
        tenant_id = require_principal(principal)
        origin = origin or AuditOrigin()
        if principal.acting_as_operator:
            origin = origin.model_copy(update={"operator": True})
        return await self.record(
            AuditEntryCreate(
                tenant_id=tenant_id,
                user_id=principal.user_id,
                action=f"{ACCESS_ACTION_PREFIX}{access_type}",
                resource_type=resource_type,
                resource_id=resource_id,
                origin=origin,
            )
        )

    async def record_auth(
        self,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
        success: bool,
        reason: Optional[str] = None,
        origin: Optional[AuditOrigin] = None,
    ) -> AuditEntry:
        """Append an authentication attempt against the `user` resource."""
        action = AuditAction.AUTH_SUCCESS if success else AuditAction.AUTH_FAILURE
        return await self.record(
            AuditEntryCreate(
                tenant_id=tenant_id,
                user_id=user_id if success else None,
                action=action.value,
                resource_type="user",
                resource_id=user_id,
                after_value={"reason": reason} if reason else None,
                origin=origin or AuditOrigin(),
            )
        )

    async def get_audit_log(
        self,
        tenant_id: uuid.UUID,
        filters: Optional[AuditLogFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> List[AuditEntry]:
        """
        Entries of one clinic, newest first.

        Args:
            tenant_id: The clinic whose trail is read; never crossed
            filters: Optional user/resource/action/time filters
            pagination: limit (capped by `audit_page_max`) and offset

        Returns:
            List of AuditEntry records ordered by occurred_at, then id, descending
        """
        pagination = pagination or Pagination()
        limit = min(pagination.limit or self.settings.audit_page_default, self.settings.audit_page_max)

        query = (
            select(AuditEntry)
            .where(and_(*self._conditions(tenant_id, filters)))
            .order_by(desc(AuditEntry.occurred_at), desc(AuditEntry.id))
            .offset(pagination.offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self, tenant_id: uuid.UUID, filters: Optional[AuditLogFilters] = None) -> int:
        query = select(func.count(AuditEntry.id)).where(and_(*self._conditions(tenant_id, filters)))
        result = await self.session.execute(query)
        return result.scalar() or 0

    def _conditions(self, tenant_id: uuid.UUID, filters: Optional[AuditLogFilters]) -> list:
        conditions = [AuditEntry.tenant_id == tenant_id]
        if filters is None:
            return conditions

        if filters.user_id:
            conditions.append(AuditEntry.user_id == filters.user_id)
        if filters.resource_type:
            conditions.append(AuditEntry.resource_type == filters.resource_type)
        if filters.resource_id:
            conditions.append(AuditEntry.resource_id == filters.resource_id)
        if filters.action:
            conditions.append(AuditEntry.action == filters.action)
        if filters.since:
            conditions.append(AuditEntry.occurred_at >= filters.since)
        if filters.until:
            conditions.append(AuditEntry.occurred_at <= filters.until)
        return conditions

    def _prepare(self, value: Any) -> Tuple[Optional[Any], bool]:
        """JSON-safe value plus whether it had to be summarized."""
        if value is None:
            return None, False

        safe = serialize_value(value)
        encoded = json.dumps(safe, sort_keys=True)
        size = len(encoded.encode("utf-8"))
        if size <= self.settings.audit_value_max_bytes:
            return safe, False

        summary: Dict[str, Any] = {
            "_truncated": True,
            "original_size": size,
            "preview": encoded[: self.settings.audit_preview_chars],
        }
        return summary, True
