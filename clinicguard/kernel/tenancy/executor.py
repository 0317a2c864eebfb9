"""
Scoped Query Executor.

All data access for tenant-scoped entities goes through this builder. The
tenant filter is not something a call site adds: the executor is built from
a Principal and every statement it issues carries
`tenant_id = principal.tenant_id` as a conjunctive condition (select,
update, delete) or as the row's tenant (insert).

The executor never writes audit entries; that is the unit of work's job.
Storage errors raised by SQLAlchemy propagate unchanged.
"""

import uuid
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinicguard.kernel.errors import ScopingConfigurationError, TenantMismatch
from clinicguard.kernel.identity.principal import Principal, require_principal
from clinicguard.kernel.tenancy.registry import EntityLike, EntityRegistry, as_uuid, get_registry
from clinicguard.logging_config import get_security_logger

security_logger = get_security_logger()

_COLLECTION_TYPES = (list, tuple, set, frozenset)


class Operation(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


def row_snapshot(row: Any) -> Dict[str, Any]:
    """Column values of a loaded ORM row, keyed by attribute name."""
    mapper = inspect(type(row))
    return {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}


class ScopedQueryExecutor:
    """
    Tenant-scoped select/insert/update/delete over ORM entities.

    Usage:
        executor = ScopedQueryExecutor(session, principal)
        visits = await executor.select("visit", {"patient_id": patient_id})
        visit = await executor.insert(Visit, {"patient_id": patient_id})
    """

    def __init__(
        self,
        session: AsyncSession,
        principal: Optional[Principal],
        registry: Optional[EntityRegistry] = None,
    ):
        self.tenant_id = require_principal(principal)
        self.principal = principal
        self.session = session
        self.registry = registry or get_registry()

    # Generic entry point

    async def execute(
        self,
        operation: Operation,
        entity: EntityLike,
        filters: Optional[Mapping[str, Any]] = None,
        values: Optional[Mapping[str, Any]] = None,
    ) -> List[Any]:
        """Run one scoped operation and return the affected rows."""
        operation = Operation(operation)
        if operation is Operation.SELECT:
            return await self.select(entity, filters)
        if operation is Operation.INSERT:
            return [await self.insert(entity, values or {})]
        if operation is Operation.UPDATE:
            return await self.update(entity, filters or {}, values or {})
        return await self.delete(entity, filters or {})

    # Reads

    async def select(
        self,
        entity: EntityLike,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        for_update: bool = False,
    ) -> List[Any]:
        model = self.registry.resolve(entity)
        query = select(model).where(*self._conditions(model, filters or {}))
        if order_by:
            query = query.order_by(*self._ordering(model, order_by))
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        if for_update:
            query = query.with_for_update()

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get(self, entity: EntityLike, resource_id: uuid.UUID) -> Optional[Any]:
        """One row by id, or None when it does not exist in this tenant."""
        rows = await self.select(entity, {"id": resource_id})
        return rows[0] if rows else None

    async def count(self, entity: EntityLike, filters: Optional[Mapping[str, Any]] = None) -> int:
        model = self.registry.resolve(entity)
        query = select(func.count()).select_from(model).where(*self._conditions(model, filters or {}))
        result = await self.session.execute(query)
        return result.scalar() or 0

    # Writes

    async def insert(self, entity: EntityLike, values: Mapping[str, Any]) -> Any:
        model = self.registry.resolve(entity)
        data = dict(values)
        if "tenant_id" in data:
            self._check_tenant_value(model, data.pop("tenant_id"))
        self._check_columns(model, data)

        row = model(tenant_id=self.tenant_id, **data)
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return row

    async def update(
        self,
        entity: EntityLike,
        filters: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> List[Any]:
        model = self.registry.resolve(entity)
        self._require_filter(model, filters, Operation.UPDATE)
        data = dict(values)
        if "tenant_id" in data:
            self._check_tenant_value(model, data.pop("tenant_id"))
        if "id" in data:
            raise ScopingConfigurationError("Primary keys cannot be reassigned", entity=model.__entity_name__)
        self._check_columns(model, data)

        rows = await self.select(model, filters, for_update=True)
        for row in rows:
            for key, value in data.items():
                setattr(row, key, value)
        if rows:
            await self.session.flush()
            for row in rows:
                await self.session.refresh(row)
        return rows

    async def delete(self, entity: EntityLike, filters: Mapping[str, Any]) -> List[Any]:
        model = self.registry.resolve(entity)
        self._require_filter(model, filters, Operation.DELETE)

        rows = await self.select(model, filters, for_update=True)
        for row in rows:
            await self.session.delete(row)
        if rows:
            await self.session.flush()
        return rows

    # Statement building

    def _conditions(self, model: Any, filters: Mapping[str, Any]) -> list:
        conditions = [model.tenant_id == self.tenant_id]
        for key, value in filters.items():
            if key == "tenant_id":
                self._check_tenant_value(model, value)
                continue
            column = self._column(model, key)
            if isinstance(value, _COLLECTION_TYPES):
                conditions.append(column.in_(list(value)))
            elif value is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == value)
        return conditions

    def _ordering(self, model: Any, order_by: Sequence[str]) -> list:
        clauses = []
        for key in order_by:
            descending = key.startswith("-")
            column = self._column(model, key.lstrip("-"))
            clauses.append(column.desc() if descending else column.asc())
        return clauses

    def _column(self, model: Any, key: str) -> Any:
        if key not in inspect(model).column_attrs.keys():
            raise ScopingConfigurationError(
                f"Unknown field '{key}' for {model.__entity_name__}",
                entity=model.__entity_name__,
                field=key,
            )
        return getattr(model, key)

    def _check_columns(self, model: Any, data: Mapping[str, Any]) -> None:
        for key in data:
            self._column(model, key)

    def _require_filter(self, model: Any, filters: Mapping[str, Any], operation: Operation) -> None:
        if not any(key != "tenant_id" for key in filters):
            raise ScopingConfigurationError(
                f"Refusing {operation.value} on every {model.__entity_name__} row of the clinic",
                entity=model.__entity_name__,
            )

    def _check_tenant_value(self, model: Any, value: Any) -> None:
        """A caller-supplied tenant id is tolerated only when it is our own."""
        values = list(value) if isinstance(value, _COLLECTION_TYPES) else [value]
        if values and all(as_uuid(v) == self.tenant_id for v in values):
            return
        security_logger.warning(
            "Tenant override attempt rejected",
            extra={
                "security_event": "tenant_mismatch",
                "entity": model.__entity_name__,
                "tenant_id": str(self.tenant_id),
                "user_id": str(self.principal.user_id) if self.principal.user_id else None,
            },
        )
        raise TenantMismatch(
            f"Explicit tenant id does not match the acting clinic for {model.__entity_name__}",
            entity=model.__entity_name__,
        )
