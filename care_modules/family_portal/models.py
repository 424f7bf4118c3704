"""
Family Portal Domain Models (``care_modules.family_portal.models``).

Family members linked to a resident, the updates staff share with them,
their communication preferences, and the read-side views (dashboard and
tenant statistics).

Visibility rule: an update is shown to a member when the member's access
level ranks at or above the update's visibility.  Emergency updates are
always ``all``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class AccessLevel(Enum):
    VIEW_ONLY = "view_only"
    STANDARD = "standard"
    FULL = "full"

    @property
    def rank(self) -> int:
        return _ACCESS_RANK[self]


_ACCESS_RANK = {AccessLevel.VIEW_ONLY: 0, AccessLevel.STANDARD: 1, AccessLevel.FULL: 2}


class UpdateType(Enum):
    CARE_PLAN = "care_plan"
    PHOTO = "photo"
    WELLBEING = "wellbeing"
    EMERGENCY = "emergency"
    GENERAL = "general"


class Visibility(Enum):
    ALL = "all"
    STANDARD = "standard"
    FULL = "full"

    @property
    def required_access(self) -> AccessLevel:
        return {
            Visibility.ALL: AccessLevel.VIEW_ONLY,
            Visibility.STANDARD: AccessLevel.STANDARD,
            Visibility.FULL: AccessLevel.FULL,
        }[self]


class ContactMethod(Enum):
    EMAIL = "email"
    SMS = "sms"
    PHONE = "phone"
    APP_NOTIFICATION = "app_notification"


class UpdateFrequency(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    AS_NEEDED = "as_needed"


@dataclass(frozen=True)
class FamilyPreferences:
    channels: tuple[ContactMethod, ...] = (ContactMethod.EMAIL,)
    frequency: UpdateFrequency = UpdateFrequency.WEEKLY
    update_types: tuple[UpdateType, ...] = tuple(UpdateType)
    emergency_notifications: bool = True
    photo_sharing: bool = True
    language: str = "en-GB"

    def to_dict(self) -> dict:
        return {
            "channels": [c.value for c in self.channels],
            "frequency": self.frequency.value,
            "update_types": [t.value for t in self.update_types],
            "emergency_notifications": self.emergency_notifications,
            "photo_sharing": self.photo_sharing,
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "FamilyPreferences":
        """Build from stored JSON; missing keys take the defaults."""
        data = data or {}
        prefs = cls()
        if "channels" in data:
            prefs = replace(prefs, channels=tuple(ContactMethod(c) for c in data["channels"]))
        if "frequency" in data:
            prefs = replace(prefs, frequency=UpdateFrequency(data["frequency"]))
        if "update_types" in data:
            prefs = replace(prefs, update_types=tuple(UpdateType(t) for t in data["update_types"]))
        for key in ("emergency_notifications", "photo_sharing", "language"):
            if key in data:
                prefs = replace(prefs, **{key: data[key]})
        return prefs

    def wants(self, update_type: UpdateType) -> bool:
        if update_type is UpdateType.EMERGENCY:
            return True
        if update_type is UpdateType.PHOTO and not self.photo_sharing:
            return False
        return update_type in self.update_types


@dataclass(frozen=True)
class FamilyMember:
    id: UUID
    tenant_id: UUID
    resident_id: UUID
    first_name: str
    last_name: str
    relationship: str
    email: str
    phone: str | None = None
    access_level: AccessLevel = AccessLevel.STANDARD
    is_primary_contact: bool = False
    consent_given: bool = False
    consent_date: datetime | None = None
    preferences: FamilyPreferences = field(default_factory=FamilyPreferences)
    care_home_id: UUID | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class FamilyUpdate:
    id: UUID
    tenant_id: UUID
    resident_id: UUID
    update_type: UpdateType
    title: str
    body: str
    visibility: Visibility
    shared_by: UUID
    shared_at: datetime
    care_home_id: UUID | None = None

    def __post_init__(self):
        if self.update_type is UpdateType.EMERGENCY and self.visibility is not Visibility.ALL:
            raise ValueError("emergency updates must be visible to all")

    def visible_to(self, member: FamilyMember) -> bool:
        return (
            member.resident_id == self.resident_id
            and member.access_level.rank >= self.visibility.required_access.rank
            and member.preferences.wants(self.update_type)
        )


@dataclass(frozen=True)
class ResidentSnapshot:
    resident_id: UUID
    display_name: str
    status: str
    care_level: str
    room_number: str | None


@dataclass(frozen=True)
class FamilyDashboard:
    member: FamilyMember
    resident: ResidentSnapshot
    recent_updates: tuple[FamilyUpdate, ...]
    emergency_updates: int
    consent_required: bool
    active_medications: int | None = None
    outstanding_balance: Decimal | None = None


@dataclass(frozen=True)
class PortalStatistics:
    tenant_id: UUID
    total_members: int
    members_with_consent: int
    primary_contacts: int
    residents_with_family: int
    members_by_access_level: dict[str, int]
    updates_by_type: dict[str, int]
    updates_last_30_days: int
