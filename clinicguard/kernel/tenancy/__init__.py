"""
Tenant isolation: scoped queries, reference validation and integrity sweeps.
"""

from clinicguard.kernel.tenancy.registry import EntityRegistry, Relationship, get_registry
from clinicguard.kernel.tenancy.executor import Operation, ScopedQueryExecutor, row_snapshot
from clinicguard.kernel.tenancy.references import ReferenceValidator, ResourceReference
from clinicguard.kernel.tenancy.integrity import IntegrityFinding, IntegrityMonitor, IntegrityReport

__all__ = [
    "EntityRegistry",
    "Relationship",
    "get_registry",
    "Operation",
    "ScopedQueryExecutor",
    "row_snapshot",
    "ReferenceValidator",
    "ResourceReference",
    "IntegrityFinding",
    "IntegrityMonitor",
    "IntegrityReport",
]
