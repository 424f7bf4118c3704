"""
Medication Module (``care_modules.medication``).

Prescriptions, the dose schedule (MAR chart) with fixed dose-time
templates, PRN interval enforcement, missed-dose sweeps, adherence metrics
and reminders for doses coming due.
"""

from care_modules.medication.helpers import DOSE_TIME_TEMPLATES, schedule_slots
from care_modules.medication.models import (
    AdherenceMetrics,
    ConcernLevel,
    DoseReminder,
    DoseStatus,
    MedicationFrequency,
    MedicationRecord,
    MedicationStatus,
    PRNCheck,
    ScheduledDose,
    Trend,
)
from care_modules.medication.workflows import DOSE_WORKFLOW, MEDICATION_WORKFLOW

__all__ = [
    "AdherenceMetrics",
    "ConcernLevel",
    "DOSE_TIME_TEMPLATES",
    "DOSE_WORKFLOW",
    "DoseReminder",
    "DoseStatus",
    "MEDICATION_WORKFLOW",
    "MedicationFrequency",
    "MedicationRecord",
    "MedicationStatus",
    "PRNCheck",
    "ScheduledDose",
    "Trend",
    "schedule_slots",
]
