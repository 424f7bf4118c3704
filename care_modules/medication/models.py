"""
Medication Domain Models (``care_modules.medication.models``).

Frozen value objects for prescriptions, scheduled doses (the MAR chart),
PRN availability checks, adherence metrics and dose reminders.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID


class MedicationFrequency(Enum):
    OD = "OD"
    BD = "BD"
    TDS = "TDS"
    QDS = "QDS"
    QID = "QID"
    PRN = "PRN"
    STAT = "STAT"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class MedicationStatus(Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DISCONTINUED = "discontinued"
    COMPLETED = "completed"


class DoseStatus(Enum):
    PENDING = "pending"
    ADMINISTERED = "administered"
    MISSED = "missed"
    REFUSED = "refused"
    OMITTED = "omitted"


class ConcernLevel(Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Trend(Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


DEFAULT_PRN_INTERVAL_HOURS = 4


@dataclass(frozen=True)
class MedicationRecord:
    id: UUID
    tenant_id: UUID
    resident_id: UUID
    medication_name: str
    dosage: str
    route: str
    frequency: MedicationFrequency
    start_date: date
    prescriber: str
    status: MedicationStatus = MedicationStatus.ACTIVE
    end_date: date | None = None
    min_interval_hours: int | None = None
    is_controlled: bool = False
    instructions: str | None = None
    care_home_id: UUID | None = None
    discontinued_reason: str | None = None

    def __post_init__(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date cannot precede start_date")
        if self.min_interval_hours is not None and self.min_interval_hours <= 0:
            raise ValueError("min_interval_hours must be positive")

    @property
    def is_prn(self) -> bool:
        return self.frequency == MedicationFrequency.PRN

    @property
    def prn_interval_hours(self) -> int:
        return self.min_interval_hours or DEFAULT_PRN_INTERVAL_HOURS


@dataclass(frozen=True)
class ScheduledDose:
    id: UUID
    tenant_id: UUID
    medication_id: UUID
    resident_id: UUID
    scheduled_at: datetime
    status: DoseStatus = DoseStatus.PENDING
    administered_at: datetime | None = None
    administered_by: UUID | None = None
    notes: str | None = None
    reminder_sent_at: datetime | None = None


@dataclass(frozen=True)
class PRNCheck:
    can_administer: bool
    reason: str | None = None
    next_available_time: datetime | None = None
    last_administered: datetime | None = None


@dataclass(frozen=True)
class AdherenceMetrics:
    resident_id: UUID
    medication_id: UUID | None
    period_days: int
    total_doses: int
    administered: int
    missed: int
    refused: int
    omitted: int
    adherence_rate: int
    trend: Trend
    concern_level: ConcernLevel
    recommendations: tuple[str, ...]


@dataclass(frozen=True)
class DoseReminder:
    dose_id: UUID
    medication_id: UUID
    resident_id: UUID
    medication_name: str
    dosage: str
    scheduled_at: datetime
    minutes_until: int
