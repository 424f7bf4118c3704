"""
Medication ORM Persistence Models (``care_modules.medication.orm``).

Invariants enforced:
    - One dose per (medication_id, scheduled_at) (uq_dose_slot): schedule
      generation can be re-run without double-booking.
    - PRN administrations are stored as doses with ``is_prn`` set, so the
      MAR chart holds every dose given.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from care_kernel.db.base import TenantScopedBase, UTCDateTime


class MedicationRecordModel(TenantScopedBase):
    """ORM model for ``MedicationRecord``."""

    __tablename__ = "medication_records"

    resident_id: Mapped[UUID] = mapped_column(ForeignKey("residents.id"), nullable=False)
    medication_name: Mapped[str] = mapped_column(String(200), nullable=False)
    dosage: Mapped[str] = mapped_column(String(100), nullable=False)
    route: Mapped[str] = mapped_column(String(50), nullable=False)
    frequency: Mapped[str] = mapped_column(String(10), nullable=False)
    min_interval_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    prescriber: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    is_controlled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    discontinued_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_medication_resident", "resident_id", "status"),
    )

    def to_dto(self):
        from care_modules.medication.models import (
            MedicationFrequency,
            MedicationRecord,
            MedicationStatus,
        )
        return MedicationRecord(
            id=self.id,
            tenant_id=self.tenant_id,
            care_home_id=self.care_home_id,
            resident_id=self.resident_id,
            medication_name=self.medication_name,
            dosage=self.dosage,
            route=self.route,
            frequency=MedicationFrequency(self.frequency),
            min_interval_hours=self.min_interval_hours,
            start_date=self.start_date,
            end_date=self.end_date,
            prescriber=self.prescriber,
            status=MedicationStatus(self.status),
            is_controlled=self.is_controlled,
            instructions=self.instructions,
            discontinued_reason=self.discontinued_reason,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "MedicationRecordModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            care_home_id=dto.care_home_id,
            resident_id=dto.resident_id,
            medication_name=dto.medication_name,
            dosage=dto.dosage,
            route=dto.route,
            frequency=dto.frequency.value,
            min_interval_hours=dto.min_interval_hours,
            start_date=dto.start_date,
            end_date=dto.end_date,
            prescriber=dto.prescriber,
            status=dto.status.value,
            is_controlled=dto.is_controlled,
            instructions=dto.instructions,
            created_by_id=created_by_id,
        )


class ScheduledDoseModel(TenantScopedBase):
    """ORM model for ``ScheduledDose``."""

    __tablename__ = "medication_scheduled_doses"

    medication_id: Mapped[UUID] = mapped_column(ForeignKey("medication_records.id"), nullable=False)
    resident_id: Mapped[UUID] = mapped_column(ForeignKey("residents.id"), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    is_prn: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    administered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    administered_by: Mapped[UUID | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("medication_id", "scheduled_at", name="uq_dose_slot"),
        Index("idx_dose_status_time", "tenant_id", "status", "scheduled_at"),
        Index("idx_dose_resident", "resident_id", "scheduled_at"),
    )

    def to_dto(self):
        from care_modules.medication.models import DoseStatus, ScheduledDose
        return ScheduledDose(
            id=self.id,
            tenant_id=self.tenant_id,
            medication_id=self.medication_id,
            resident_id=self.resident_id,
            scheduled_at=self.scheduled_at,
            status=DoseStatus(self.status),
            administered_at=self.administered_at,
            administered_by=self.administered_by,
            notes=self.notes,
            reminder_sent_at=self.reminder_sent_at,
        )
