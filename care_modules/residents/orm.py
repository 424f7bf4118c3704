"""
Resident ORM Persistence Models (``care_modules.residents.orm``).

Invariants enforced:
    - ``nhs_number`` is unique per tenant (uq_resident_nhs_number).
    - ``weekly_fee`` is Decimal (Numeric(38,9)).
    - allergies / medical_conditions are JSON arrays of short strings.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from care_kernel.db.base import Money, TenantScopedBase, UTCDateTime
from care_kernel.domain.money import money


class ResidentModel(TenantScopedBase):
    """ORM model for ``Resident``."""

    __tablename__ = "residents"

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    preferred_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    nhs_number: Mapped[str] = mapped_column(String(10), nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    gender: Mapped[str | None] = mapped_column(String(30), nullable=True)
    care_level: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="active", nullable=False)
    admission_date: Mapped[date] = mapped_column(Date, nullable=False)
    discharge_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    discharge_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    room_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    weekly_fee: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    funding_source: Mapped[str] = mapped_column(String(30), nullable=False)
    allergies: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    medical_conditions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    gp_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    next_of_kin_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    next_of_kin_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    gdpr_consent_given: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    gdpr_consent_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "nhs_number", name="uq_resident_nhs_number"),
        Index("idx_resident_status", "tenant_id", "status"),
        Index("idx_resident_care_home", "care_home_id"),
        Index("idx_resident_name", "last_name", "first_name"),
    )

    def to_dto(self):
        from care_modules.residents.models import (
            CareLevel,
            FundingSource,
            Resident,
            ResidentStatus,
        )
        return Resident(
            id=self.id,
            tenant_id=self.tenant_id,
            care_home_id=self.care_home_id,
            first_name=self.first_name,
            last_name=self.last_name,
            preferred_name=self.preferred_name,
            nhs_number=self.nhs_number,
            date_of_birth=self.date_of_birth,
            gender=self.gender,
            care_level=CareLevel(self.care_level),
            status=ResidentStatus(self.status),
            admission_date=self.admission_date,
            discharge_date=self.discharge_date,
            discharge_reason=self.discharge_reason,
            room_number=self.room_number,
            weekly_fee=money(self.weekly_fee),
            funding_source=FundingSource(self.funding_source),
            allergies=tuple(self.allergies or ()),
            medical_conditions=tuple(self.medical_conditions or ()),
            gp_name=self.gp_name,
            next_of_kin_name=self.next_of_kin_name,
            next_of_kin_phone=self.next_of_kin_phone,
            gdpr_consent_given=self.gdpr_consent_given,
            gdpr_consent_date=self.gdpr_consent_date,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "ResidentModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            care_home_id=dto.care_home_id,
            first_name=dto.first_name,
            last_name=dto.last_name,
            preferred_name=dto.preferred_name,
            nhs_number=dto.nhs_number,
            date_of_birth=dto.date_of_birth,
            gender=dto.gender,
            care_level=dto.care_level.value,
            status=dto.status.value,
            admission_date=dto.admission_date,
            discharge_date=dto.discharge_date,
            discharge_reason=dto.discharge_reason,
            room_number=dto.room_number,
            weekly_fee=dto.weekly_fee,
            funding_source=dto.funding_source.value,
            allergies=list(dto.allergies),
            medical_conditions=list(dto.medical_conditions),
            gp_name=dto.gp_name,
            next_of_kin_name=dto.next_of_kin_name,
            next_of_kin_phone=dto.next_of_kin_phone,
            gdpr_consent_given=dto.gdpr_consent_given,
            gdpr_consent_date=dto.gdpr_consent_date,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<ResidentModel {self.last_name}, {self.first_name} ({self.status})>"
