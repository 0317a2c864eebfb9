"""
Audit trail.

Append-only record of every accepted mutation, written in the same
transaction as the mutation.
"""

from clinicguard.kernel.audit.recorder import AuditRecorder, serialize_value
from clinicguard.kernel.audit.types import (
    AuditEntryCreate,
    AuditLogFilters,
    AuditOrigin,
    Pagination,
)

__all__ = [
    "AuditRecorder",
    "AuditEntryCreate",
    "AuditLogFilters",
    "AuditOrigin",
    "Pagination",
    "serialize_value",
]
