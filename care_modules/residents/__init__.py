"""
Residents Module (``care_modules.residents``).

Resident records for a care home: admission, demographic and clinical
summary fields, funding, GDPR consent and discharge.  Every mutation is
audited.
"""

from care_modules.residents.models import (
    CareLevel,
    FundingSource,
    Resident,
    ResidentStatus,
)
from care_modules.residents.workflows import RESIDENT_WORKFLOW

__all__ = [
    "CareLevel",
    "FundingSource",
    "RESIDENT_WORKFLOW",
    "Resident",
    "ResidentStatus",
]
