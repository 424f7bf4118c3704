"""
Family Portal ORM Persistence Models (``care_modules.family_portal.orm``).

Invariants enforced:
    - A family member's email is unique per resident (uq_family_member_email).
    - ``preferences`` is stored as JSON and always read back through
      ``FamilyPreferences.from_dict`` so missing keys take defaults.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from care_kernel.db.base import TenantScopedBase, UTCDateTime


class FamilyMemberModel(TenantScopedBase):
    """ORM model for ``FamilyMember``."""

    __tablename__ = "family_members"

    resident_id: Mapped[UUID] = mapped_column(ForeignKey("residents.id"), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    relationship: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    access_level: Mapped[str] = mapped_column(String(20), default="standard", nullable=False)
    is_primary_contact: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consent_given: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consent_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    preferences: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    __table_args__ = (
        UniqueConstraint("resident_id", "email", name="uq_family_member_email"),
        Index("idx_family_member_resident", "tenant_id", "resident_id"),
    )

    def to_dto(self):
        from care_modules.family_portal.models import (
            AccessLevel,
            FamilyMember,
            FamilyPreferences,
        )
        return FamilyMember(
            id=self.id,
            tenant_id=self.tenant_id,
            care_home_id=self.care_home_id,
            resident_id=self.resident_id,
            first_name=self.first_name,
            last_name=self.last_name,
            relationship=self.relationship,
            email=self.email,
            phone=self.phone,
            access_level=AccessLevel(self.access_level),
            is_primary_contact=self.is_primary_contact,
            consent_given=self.consent_given,
            consent_date=self.consent_date,
            preferences=FamilyPreferences.from_dict(self.preferences),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "FamilyMemberModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            care_home_id=dto.care_home_id,
            resident_id=dto.resident_id,
            first_name=dto.first_name,
            last_name=dto.last_name,
            relationship=dto.relationship,
            email=dto.email,
            phone=dto.phone,
            access_level=dto.access_level.value,
            is_primary_contact=dto.is_primary_contact,
            consent_given=dto.consent_given,
            consent_date=dto.consent_date,
            preferences=dto.preferences.to_dict(),
            created_by_id=created_by_id,
        )


class FamilyUpdateModel(TenantScopedBase):
    """ORM model for ``FamilyUpdate``."""

    __tablename__ = "family_updates"

    resident_id: Mapped[UUID] = mapped_column(ForeignKey("residents.id"), nullable=False)
    update_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    visibility: Mapped[str] = mapped_column(String(20), default="all", nullable=False)
    shared_by: Mapped[UUID] = mapped_column(nullable=False)
    shared_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index("idx_family_update_resident_time", "resident_id", "shared_at"),
        Index("idx_family_update_tenant_type", "tenant_id", "update_type"),
    )

    def to_dto(self):
        from care_modules.family_portal.models import FamilyUpdate, UpdateType, Visibility
        return FamilyUpdate(
            id=self.id,
            tenant_id=self.tenant_id,
            care_home_id=self.care_home_id,
            resident_id=self.resident_id,
            update_type=UpdateType(self.update_type),
            title=self.title,
            body=self.body,
            visibility=Visibility(self.visibility),
            shared_by=self.shared_by,
            shared_at=self.shared_at,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "FamilyUpdateModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            care_home_id=dto.care_home_id,
            resident_id=dto.resident_id,
            update_type=dto.update_type.value,
            title=dto.title,
            body=dto.body,
            visibility=dto.visibility.value,
            shared_by=dto.shared_by,
            shared_at=dto.shared_at,
            created_by_id=created_by_id,
        )
