"""
Catalog of permission keys, role defaults and feature gates.

Keys are dotted strings (`<area>.<action>`). A role implies a default set of
keys; explicit grants add to it per user and per clinic. Keys under a
feature-gated prefix are only usable while that feature is enabled for the
clinic.
"""

from typing import Dict, FrozenSet, Optional

from clinicguard.config import get_settings
from clinicguard.kernel.models.user import UserRole


# Permission keys

PATIENT_KEYS = frozenset({
    "patient.add",
    "patient.edit",
    "patient.view",
    "patient.delete",
})

APPOINTMENT_KEYS = frozenset({
    "appointment.create",
    "appointment.edit",
    "appointment.view",
    "appointment.cancel",
})

BILLING_KEYS = frozenset({
    "billing.create",
    "billing.edit",
    "billing.view",
    "billing.payment",
})

CLINICAL_KEYS = frozenset({
    "clinical.visit.create",
    "clinical.visit.edit",
    "clinical.visit.view",
    "clinical.lab.order",
})

LAB_KEYS = frozenset({
    "lab.request.create",
    "lab.result.enter",
    "lab.result.view",
    "lab.results",
    "lab.dashboard",
})

REPORT_KEYS = frozenset({
    "reports.clinical",
    "reports.financial",
    "reports.patient",
    "reports.export",
})

ADMIN_KEYS = frozenset({
    "admin.users",
    "admin.permissions",
    "admin.settings",
    "admin.audit",
    "admin.features",
    "admin.integrity",
})

ALL_PERMISSIONS: FrozenSet[str] = (
    PATIENT_KEYS
    | APPOINTMENT_KEYS
    | BILLING_KEYS
    | CLINICAL_KEYS
    | LAB_KEYS
    | REPORT_KEYS
    | ADMIN_KEYS
)


# Features

OPTIONAL_FEATURES = frozenset({
    "appointments",
    "laboratory",
    "billing",
    "parent_portal",
    "sms_notifications",
    "pediatric_features",
    "advanced_analytics",
    "clinical_templates",
    "vaccine_management",
    "growth_tracking",
})

# Key prefix -> feature that must be enabled. The longest matching prefix wins.
FEATURE_GATES: Dict[str, str] = {
    "appointment.": "appointments",
    "billing.": "billing",
    "reports.financial": "billing",
    "clinical.lab.": "laboratory",
    "lab.": "laboratory",
    "reports.": "advanced_analytics",
}


# Role defaults

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    UserRole.SUPER_USER.value: ALL_PERMISSIONS,
    UserRole.OWNER.value: ALL_PERMISSIONS,
    UserRole.ADMIN.value: (
        PATIENT_KEYS
        | APPOINTMENT_KEYS
        | BILLING_KEYS
        | REPORT_KEYS
        | frozenset({"admin.users", "admin.permissions", "admin.settings", "admin.audit"})
    ),
    UserRole.DOCTOR.value: (
        (PATIENT_KEYS - {"patient.delete"})
        | APPOINTMENT_KEYS
        | CLINICAL_KEYS
        | frozenset({
            "lab.request.create",
            "lab.result.view",
            "lab.results",
            "billing.view",
            "reports.clinical",
            "reports.patient",
        })
    ),
    UserRole.NURSE.value: (
        (PATIENT_KEYS - {"patient.delete"})
        | APPOINTMENT_KEYS
        | frozenset({"clinical.visit.view", "lab.result.view", "lab.results"})
    ),
    UserRole.STAFF.value: (
        frozenset({"patient.add", "patient.edit", "patient.view"})
        | APPOINTMENT_KEYS
        | frozenset({"billing.create", "billing.view", "billing.payment"})
    ),
    UserRole.LAB_TECHNICIAN.value: (
        frozenset({"patient.view"})
        | LAB_KEYS
    ),
}


def is_known_permission(key: str) -> bool:
    return key in ALL_PERMISSIONS


def is_known_feature(name: str) -> bool:
    return name in OPTIONAL_FEATURES or name in get_settings().core_features


def feature_for(key: str) -> Optional[str]:
    """Feature gating `key`, or None when the key is always available."""
    match = None
    for prefix in FEATURE_GATES:
        if key.startswith(prefix) and (match is None or len(prefix) > len(match)):
            match = prefix
    return FEATURE_GATES[match] if match else None


def role_defaults(role: str) -> FrozenSet[str]:
    return ROLE_PERMISSIONS.get(role, frozenset())
