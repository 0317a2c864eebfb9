"""
Cross-Reference Validator.

Before a mutation links one entity to another (a visit to a patient, a lab
result to a lab request), every referenced row must exist and belong to the
acting clinic. Validation is all-or-nothing and happens before any write.
"""

import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicguard.kernel.errors import CrossTenantReference, ReferenceNotFound
from clinicguard.kernel.identity.principal import Principal, require_principal
from clinicguard.kernel.tenancy.registry import EntityLike, EntityRegistry, as_uuid, get_registry
from clinicguard.logging_config import get_logger, get_security_logger

logger = get_logger(__name__)
security_logger = get_security_logger()


@dataclass(frozen=True)
class ResourceReference:
    """An (entity, id) pair found as a foreign key inside a mutation payload."""

    entity: str
    id: Any


class ReferenceValidator:
    """
    Resolves the owning clinic of every referenced row.

    Ownership is read without tenant scoping on purpose: a row that exists
    in another clinic must be reported as CrossTenantReference, not as
    missing. Neither error reveals which clinic owns the row.
    """

    def __init__(self, session: AsyncSession, registry: Optional[EntityRegistry] = None):
        self.session = session
        self.registry = registry or get_registry()

    def references_from_payload(
        self,
        entity: EntityLike,
        payload: Mapping[str, Any],
    ) -> List[ResourceReference]:
        """References implied by the entity's foreign keys present in `payload`."""
        references = []
        for column, target in self.registry.foreign_keys(entity).items():
            value = payload.get(column)
            if value is not None:
                references.append(ResourceReference(entity=target, id=value))
        return references

    async def validate_references(
        self,
        principal: Optional[Principal],
        references: Iterable[ResourceReference],
        *,
        lock: bool = False,
    ) -> None:
        """
        Raise unless every reference resolves to a row of the principal's clinic.

        With `lock=True` the owning rows are read FOR UPDATE, so ownership
        cannot change between validation and the write that follows in the
        same transaction.

        Raises:
            MissingTenantContext: no principal / tenant
            CrossTenantReference: any reference owned by another clinic
            ReferenceNotFound: any reference that does not exist
        """
        tenant_id = require_principal(principal)

        grouped: Dict[str, List[ResourceReference]] = defaultdict(list)
        for reference in references:
            grouped[self.registry.name_of(reference.entity)].append(reference)

        missing: List[ResourceReference] = []
        foreign: List[Tuple[ResourceReference, uuid.UUID]] = []
        for entity_name in sorted(grouped):
            owners = await self._owners(entity_name, grouped[entity_name], lock)
            for reference in grouped[entity_name]:
                owner = owners.get(as_uuid(reference.id))
                if owner is None:
                    missing.append(reference)
                elif owner != tenant_id:
                    foreign.append((reference, owner))

        if foreign:
            reference, owner = foreign[0]
            entity_name = self.registry.name_of(reference.entity)
            security_logger.warning(
                "Cross-tenant reference rejected",
                extra={
                    "security_event": "cross_tenant_reference",
                    "tenant_id": str(tenant_id),
                    "user_id": str(principal.user_id) if principal.user_id else None,
                    "entity": entity_name,
                    "resource_id": str(reference.id),
                    "owner_tenant_id": str(owner),
                    "violations": len(foreign),
                },
            )
            raise CrossTenantReference(entity_name, reference.id)

        if missing:
            reference = missing[0]
            logger.info(
                "Reference not found",
                extra={"entity": reference.entity, "resource_id": str(reference.id)},
            )
            raise ReferenceNotFound(self.registry.name_of(reference.entity), reference.id)

    async def _owners(
        self,
        entity_name: str,
        references: Sequence[ResourceReference],
        lock: bool,
    ) -> Dict[uuid.UUID, uuid.UUID]:
        """Map of id -> owning tenant id for the references that exist."""
        model = self.registry.resolve(entity_name)
        ids = {rid for rid in (as_uuid(r.id) for r in references) if rid is not None}
        if not ids:
            return {}

        query = select(model.id, model.tenant_id).where(model.id.in_(ids))
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return {row.id: row.tenant_id for row in result.all()}
