"""
Registry of tenant-scoped entity classes.

Maps the names used in references, audit entries and integrity reports to
their SQLAlchemy models, and exposes the foreign keys between them.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type, Union

from clinicguard.kernel.errors import ScopingConfigurationError
from clinicguard.kernel.models.base import Base, TenantScopedMixin

EntityLike = Union[str, Type[TenantScopedMixin]]


@dataclass(frozen=True)
class Relationship:
    """A foreign key from one tenant-scoped entity to another."""

    source: str
    column: str
    target: str

    @property
    def name(self) -> str:
        return f"{self.source}.{self.column} -> {self.target}"


class EntityRegistry:
    """Lookup of tenant-scoped models by entity name and by table name."""

    def __init__(self, models: Optional[List[Type[TenantScopedMixin]]] = None):
        if models is None:
            models = [
                mapper.class_
                for mapper in Base.registry.mappers
                if issubclass(mapper.class_, TenantScopedMixin)
            ]
        self._by_name: Dict[str, Type[TenantScopedMixin]] = {}
        self._by_table: Dict[str, Type[TenantScopedMixin]] = {}
        for model in models:
            self._by_name[model.__entity_name__] = model
            self._by_table[model.__tablename__] = model

    def resolve(self, entity: EntityLike) -> Type[TenantScopedMixin]:
        """Model class for a name or class; only tenant-scoped models resolve."""
        if isinstance(entity, str):
            model = self._by_name.get(entity) or self._by_table.get(entity)
            if model is None:
                raise ScopingConfigurationError(f"Unknown entity: {entity}", entity=entity)
            return model
        if isinstance(entity, type) and issubclass(entity, TenantScopedMixin):
            return entity
        raise ScopingConfigurationError(
            f"{entity!r} is not a tenant-scoped entity",
            entity=getattr(entity, "__name__", repr(entity)),
        )

    def name_of(self, entity: EntityLike) -> str:
        return self.resolve(entity).__entity_name__

    def entity_names(self) -> List[str]:
        return sorted(self._by_name)

    def foreign_keys(self, entity: EntityLike) -> Dict[str, str]:
        """Column name -> referenced entity name, for tenant-scoped targets only."""
        model = self.resolve(entity)
        refs: Dict[str, str] = {}
        for fk in model.__table__.foreign_keys:
            if fk.parent.name == "tenant_id":
                continue
            target = self._by_table.get(fk.column.table.name)
            if target is not None:
                refs[fk.parent.name] = target.__entity_name__
        return refs

    def relationships(self) -> List[Relationship]:
        """Every tenant-scoped foreign key known to the registry."""
        result = []
        for name in self.entity_names():
            for column, target in sorted(self.foreign_keys(name).items()):
                result.append(Relationship(source=name, column=column, target=target))
        return result


_default_registry: Optional[EntityRegistry] = None


def get_registry() -> EntityRegistry:
    """Registry over every tenant-scoped kernel model."""
    global _default_registry
    if _default_registry is None:
        _default_registry = EntityRegistry()
    return _default_registry


def as_uuid(value: Any) -> Optional[uuid.UUID]:
    """Coerce an id to UUID; None when it cannot be one."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
