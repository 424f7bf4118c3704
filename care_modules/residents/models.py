"""
Resident Domain Models (``care_modules.residents.models``).

Frozen value objects for residents.  ``weekly_fee`` is Decimal; allergies
and medical conditions are tuples of short strings (no free-text notes).
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class CareLevel(Enum):
    RESIDENTIAL = "residential"
    NURSING = "nursing"
    DEMENTIA = "dementia"
    RESPITE = "respite"
    PALLIATIVE = "palliative"


class ResidentStatus(Enum):
    ACTIVE = "active"
    TEMPORARY_ABSENCE = "temporary_absence"
    DISCHARGED = "discharged"
    DECEASED = "deceased"


class FundingSource(Enum):
    SELF_FUNDED = "self_funded"
    LOCAL_AUTHORITY = "local_authority"
    NHS_CHC = "nhs_chc"
    MIXED = "mixed"


@dataclass(frozen=True)
class Resident:
    id: UUID
    tenant_id: UUID
    first_name: str
    last_name: str
    nhs_number: str
    date_of_birth: date
    admission_date: date
    care_level: CareLevel
    funding_source: FundingSource
    weekly_fee: Decimal
    status: ResidentStatus = ResidentStatus.ACTIVE
    care_home_id: UUID | None = None
    preferred_name: str | None = None
    gender: str | None = None
    room_number: str | None = None
    discharge_date: date | None = None
    discharge_reason: str | None = None
    allergies: tuple[str, ...] = ()
    medical_conditions: tuple[str, ...] = ()
    gp_name: str | None = None
    next_of_kin_name: str | None = None
    next_of_kin_phone: str | None = None
    gdpr_consent_given: bool = False
    gdpr_consent_date: datetime | None = None

    def __post_init__(self):
        if self.weekly_fee < 0:
            raise ValueError("weekly_fee cannot be negative")
        if self.date_of_birth > self.admission_date:
            raise ValueError("date_of_birth cannot be after admission_date")
        if self.discharge_date is not None and self.discharge_date < self.admission_date:
            raise ValueError("discharge_date cannot precede admission_date")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def daily_rate(self) -> Decimal:
        return self.weekly_fee / Decimal("7")

    def age_on(self, as_of: date) -> int:
        years = as_of.year - self.date_of_birth.year
        if (as_of.month, as_of.day) < (self.date_of_birth.month, self.date_of_birth.day):
            years -= 1
        return years
