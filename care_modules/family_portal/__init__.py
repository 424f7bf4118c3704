"""Family portal: members, shared updates, preferences and dashboards."""

from care_modules.family_portal.models import (
    AccessLevel,
    ContactMethod,
    FamilyDashboard,
    FamilyMember,
    FamilyPreferences,
    FamilyUpdate,
    PortalStatistics,
    ResidentSnapshot,
    UpdateFrequency,
    UpdateType,
    Visibility,
)
from care_modules.family_portal.service import FamilyPortalService

__all__ = [
    "AccessLevel",
    "ContactMethod",
    "FamilyDashboard",
    "FamilyMember",
    "FamilyPortalService",
    "FamilyPreferences",
    "FamilyUpdate",
    "PortalStatistics",
    "ResidentSnapshot",
    "UpdateFrequency",
    "UpdateType",
    "Visibility",
]
