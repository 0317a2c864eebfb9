"""
Integrity Monitor.

Read-only sweep over one clinic's rows looking for data the write path
should never have let through: foreign keys pointing at nothing, foreign
keys pointing into another clinic, and rows with no audit trail at all.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy import exists, func, not_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from clinicguard.config import Settings, get_settings
from clinicguard.kernel.audit.recorder import Clock, utc_now
from clinicguard.kernel.errors import KernelError
from clinicguard.kernel.models.audit_entry import NON_MUTATION_PREFIXES, AuditEntry
from clinicguard.kernel.tenancy.registry import EntityRegistry, Relationship, get_registry
from clinicguard.logging_config import get_logger, get_security_logger

logger = get_logger(__name__)
security_logger = get_security_logger()


class FindingKind(str, Enum):
    ORPHANED = "orphaned"
    CROSS_TENANT = "cross_tenant"
    UNAUDITED = "unaudited"
    ERROR = "error"


class IntegrityFinding(BaseModel):
    kind: FindingKind
    entity: str
    relationship: Optional[str] = None
    count: int = 0
    sample_ids: List[uuid.UUID] = Field(default_factory=list)
    error: Optional[str] = None


class IntegrityReport(BaseModel):
    tenant_id: uuid.UUID
    started_at: datetime
    finished_at: datetime
    relationships_checked: int
    entities_checked: int
    findings: List[IntegrityFinding] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.findings


class IntegrityMonitor:
    """
    Usage:
        monitor = IntegrityMonitor(session)
        report = await monitor.run_integrity_sweep(tenant_id)
        for finding in report.findings:
            ...

    The sweep never raises for a single broken check: the failure becomes an
    `error` finding and the sweep moves on. The session must not carry
    pending writes, because a failed check rolls it back.
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: Optional[EntityRegistry] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        self.session = session
        self.registry = registry or get_registry()
        self.settings = settings or get_settings()
        self.clock = clock or utc_now

    async def run_integrity_sweep(
        self,
        tenant_id: uuid.UUID,
        relationships: Optional[Sequence[Relationship]] = None,
        check_audit: bool = True,
    ) -> IntegrityReport:
        """
        Check every relationship (default: all registered foreign keys) for
        the clinic, then look for rows without any audit entry.
        """
        started_at = self.clock()
        if relationships is None:
            relationships = self.registry.relationships()

        findings: List[IntegrityFinding] = []
        for relationship in relationships:
            findings.extend(await self._check_relationship(tenant_id, relationship))

        entities = self.registry.entity_names() if check_audit else []
        for entity in entities:
            finding = await self._check_audited(tenant_id, entity)
            if finding is not None:
                findings.append(finding)

        report = IntegrityReport(
            tenant_id=tenant_id,
            started_at=started_at,
            finished_at=self.clock(),
            relationships_checked=len(relationships),
            entities_checked=len(entities),
            findings=findings,
        )
        logger.info(
            "Integrity sweep finished",
            extra={
                "tenant_id": str(tenant_id),
                "relationships_checked": report.relationships_checked,
                "findings": len(findings),
            },
        )
        return report

    async def get_tenant_stats(self, tenant_id: uuid.UUID) -> Dict[str, int]:
        """Row count per tenant-scoped entity."""
        stats = {}
        for entity in self.registry.entity_names():
            model = self.registry.resolve(entity)
            query = select(func.count()).select_from(model).where(model.tenant_id == tenant_id)
            result = await self.session.execute(query)
            stats[entity] = result.scalar() or 0
        return stats

    async def _check_relationship(
        self,
        tenant_id: uuid.UUID,
        relationship: Relationship,
    ) -> List[IntegrityFinding]:
        findings = []
        try:
            source = self.registry.resolve(relationship.source)
            target = aliased(self.registry.resolve(relationship.target))
            fk = getattr(source, relationship.column)

            orphaned = (
                select(source.id)
                .outerjoin(target, fk == target.id)
                .where(source.tenant_id == tenant_id, fk.is_not(None), target.id.is_(None))
            )
            finding = await self._finding(FindingKind.ORPHANED, relationship, orphaned)
            if finding is not None:
                findings.append(finding)

            foreign = (
                select(source.id)
                .join(target, fk == target.id)
                .where(source.tenant_id == tenant_id, target.tenant_id != tenant_id)
            )
            finding = await self._finding(FindingKind.CROSS_TENANT, relationship, foreign)
            if finding is not None:
                security_logger.warning(
                    "Cross-tenant link found by integrity sweep",
                    extra={
                        "security_event": "integrity_cross_tenant",
                        "tenant_id": str(tenant_id),
                        "relationship": relationship.name,
                        "count": finding.count,
                    },
                )
                findings.append(finding)
        except (SQLAlchemyError, KernelError, AttributeError) as exc:
            if isinstance(exc, SQLAlchemyError):
                await self.session.rollback()
            logger.error(
                "Integrity check failed",
                extra={"tenant_id": str(tenant_id), "relationship": relationship.name, "error": str(exc)},
            )
            findings.append(
                IntegrityFinding(
                    kind=FindingKind.ERROR,
                    entity=relationship.source,
                    relationship=relationship.name,
                    error=str(exc),
                )
            )
        return findings

    async def _check_audited(self, tenant_id: uuid.UUID, entity: str) -> Optional[IntegrityFinding]:
        model = self.registry.resolve(entity)
        has_entry = exists().where(
            AuditEntry.tenant_id == tenant_id,
            AuditEntry.resource_type == entity,
            AuditEntry.resource_id == model.id,
            not_(or_(*(
                AuditEntry.action.startswith(prefix, autoescape=True) for prefix in NON_MUTATION_PREFIXES
            ))),
        )
        query = select(model.id).where(model.tenant_id == tenant_id, ~has_entry)
        try:
            return await self._finding(FindingKind.UNAUDITED, None, query, entity=entity)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            return IntegrityFinding(kind=FindingKind.ERROR, entity=entity, error=str(exc))

    async def _finding(
        self,
        kind: FindingKind,
        relationship: Optional[Relationship],
        query,
        entity: Optional[str] = None,
    ) -> Optional[IntegrityFinding]:
        """Count the offending ids of `query` and sample a few of them."""
        subquery = query.subquery()
        result = await self.session.execute(select(func.count()).select_from(subquery))
        count = result.scalar() or 0
        if not count:
            return None

        id_column = list(subquery.c)[0]
        result = await self.session.execute(
            select(id_column).order_by(id_column).limit(self.settings.integrity_sample_size)
        )
        return IntegrityFinding(
            kind=kind,
            entity=entity or relationship.source,
            relationship=relationship.name if relationship else None,
            count=count,
            sample_ids=[row[0] for row in result.all()],
        )
