"""
License Service - Feature flag checks.

Features are enabled through the ENABLED_FEATURES setting.
"""

import enum
from typing import Iterable, Optional

from rollout_planner.core.config import settings


class Feature(str, enum.Enum):
    """Licensed features consulted during plan compilation."""
    TASK_SCHEDULE_TIME = "TASK_SCHEDULE_TIME"
    MULTI_TENANCY = "MULTI_TENANCY"

    def access_error_message(self) -> str:
        label = self.value.lower().replace("_", "-")
        return f"{label} is not available in your current plan"


class LicenseService:
    """Answers `is_feature_enabled` from a fixed set of feature names."""

    def __init__(self, enabled_features: Optional[Iterable[str]] = None):
        if enabled_features is None:
            enabled_features = settings.ENABLED_FEATURES
        self._enabled = {Feature(name) for name in enabled_features}

    def is_feature_enabled(self, feature: Feature) -> bool:
        return feature in self._enabled
