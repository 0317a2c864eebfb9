"""
Per-clinic feature flags.

A feature with no row is disabled. Core features always read as enabled
and can never be switched off. Every change appends an audit entry in the
same transaction as the flag row.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from clinicguard.config import Settings, get_settings
from clinicguard.kernel.audit import AuditEntryCreate, AuditOrigin, AuditRecorder
from clinicguard.kernel.audit.recorder import Clock, utc_now
from clinicguard.kernel.errors import CoreFeatureLocked, ScopingConfigurationError
from clinicguard.kernel.identity.principal import Principal
from clinicguard.kernel.models.audit_entry import AuditAction
from clinicguard.kernel.models.feature_flag import TenantFeature
from clinicguard.kernel.permissions.catalog import OPTIONAL_FEATURES, is_known_feature
from clinicguard.kernel.permissions.gate import TenantFeatures
from clinicguard.kernel.tenancy.executor import ScopedQueryExecutor, row_snapshot
from clinicguard.logging_config import get_logger

logger = get_logger(__name__)


class FeatureFlagService:
    """
    Reads and toggles feature flags for one clinic at a time.

    The service does not authorize: callers gate `set_feature` (the HTTP
    adapter requires an operator). It flushes but never commits.
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

    def _executor(self, tenant_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> ScopedQueryExecutor:
        return ScopedQueryExecutor(self.session, Principal.build(tenant_id, user_id))

    async def _rows(self, tenant_id: uuid.UUID) -> Dict[str, TenantFeature]:
        rows = await self._executor(tenant_id).select(TenantFeature)
        return {row.feature_name: row for row in rows}

    async def is_feature_enabled(self, tenant_id: uuid.UUID, feature_name: str) -> bool:
        if feature_name in self.settings.core_features:
            return True
        rows = await self._executor(tenant_id).select(TenantFeature, {"feature_name": feature_name})
        return bool(rows) and rows[0].enabled

    async def load_features(self, tenant_id: uuid.UUID) -> TenantFeatures:
        """Snapshot for the permission gate."""
        rows = await self._rows(tenant_id)
        enabled = {name for name, row in rows.items() if row.enabled}
        enabled.update(self.settings.core_features)
        return TenantFeatures(tenant_id=tenant_id, enabled=frozenset(enabled))

    async def list_features(self, tenant_id: uuid.UUID) -> List[Dict[str, object]]:
        """Every known feature with its state for the clinic, sorted by name."""
        rows = await self._rows(tenant_id)
        result = []
        for name in sorted(OPTIONAL_FEATURES | set(self.settings.core_features) | set(rows)):
            row = rows.get(name)
            core = name in self.settings.core_features
            result.append({
                "feature_name": name,
                "enabled": core or bool(row and row.enabled),
                "core": core,
                "changed_by": row.changed_by if row else None,
                "changed_at": row.changed_at if row else None,
            })
        return result

    async def set_feature(
        self,
        tenant_id: uuid.UUID,
        feature_name: str,
        enabled: bool,
        changed_by: Optional[uuid.UUID],
        origin: Optional[AuditOrigin] = None,
    ) -> TenantFeature:
        """
        Enable or disable a feature for one clinic.

        Raises:
            CoreFeatureLocked: disabling a core feature
            ScopingConfigurationError: unknown feature name
        """
        if feature_name in self.settings.core_features and not enabled:
            raise CoreFeatureLocked(feature_name)
        if not is_known_feature(feature_name):
            raise ScopingConfigurationError(f"Unknown feature: {feature_name}", feature=feature_name)

        executor = self._executor(tenant_id, changed_by)
        now: datetime = self.clock()
        existing = await executor.select(TenantFeature, {"feature_name": feature_name}, for_update=True)

        if existing:
            before = row_snapshot(existing[0])
            rows = await executor.update(
                TenantFeature,
                {"id": existing[0].id},
                {"enabled": enabled, "changed_by": changed_by, "changed_at": now},
            )
            row = rows[0]
        else:
            before = None
            row = await executor.insert(
                TenantFeature,
                {
                    "feature_name": feature_name,
                    "enabled": enabled,
                    "changed_by": changed_by,
                    "changed_at": now,
                },
            )

        await AuditRecorder(self.session, self.settings, self.clock).record(
            AuditEntryCreate(
                tenant_id=tenant_id,
                user_id=changed_by,
                action=(AuditAction.FEATURE_ENABLED if enabled else AuditAction.FEATURE_DISABLED).value,
                resource_type=TenantFeature.__entity_name__,
                resource_id=row.id,
                before_value=before,
                after_value=row_snapshot(row),
                origin=origin or AuditOrigin(),
                occurred_at=now,
            )
        )

        logger.info(
            "Feature flag changed",
            extra={"tenant_id": str(tenant_id), "feature": feature_name, "enabled": enabled},
        )
        return row
