"""
Per-clinic feature flags.
"""

from clinicguard.kernel.features.feature_service import FeatureFlagService

__all__ = ["FeatureFlagService"]
