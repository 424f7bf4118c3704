"""Prescriptions, dose schedules, the MAR chart and adherence."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from care_api.auth import Principal, require_roles
from care_api.deps import AuditDep, ClockDep, SessionDep, active_tenant
from care_api.envelope import ok
from care_modules.medication.models import DoseStatus, MedicationFrequency, MedicationStatus
from care_modules.medication.service import DEFAULT_SCHEDULE_DAYS, MedicationService

router = APIRouter(dependencies=[Depends(active_tenant)])

_CLINICAL = ("nurse",)
_CARE = ("nurse", "carer", "manager")


class Prescription(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resident_id: UUID
    medication_name: str = Field(min_length=1)
    dosage: str = Field(min_length=1)
    route: str = Field(min_length=1)
    frequency: MedicationFrequency
    start_date: date
    prescriber: str = Field(min_length=1)
    end_date: Optional[date] = None
    min_interval_hours: Optional[int] = Field(default=None, gt=0)
    is_controlled: bool = False
    instructions: Optional[str] = None


class Reason(BaseModel):
    reason: Optional[str] = None


class ScheduleIn(BaseModel):
    start_date: Optional[date] = None
    duration_days: int = Field(default=DEFAULT_SCHEDULE_DAYS, ge=1, le=90)


class AdministrationIn(BaseModel):
    outcome: DoseStatus
    notes: Optional[str] = None


class PRNIn(BaseModel):
    at: Optional[datetime] = None
    notes: Optional[str] = None


def _service(session: SessionDep, clock: ClockDep, audit: AuditDep) -> MedicationService:
    return MedicationService(session, clock=clock, audit=audit)


@router.post("", status_code=201, summary="Prescribe a medication")
def prescribe(
    body: Prescription,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CLINICAL)),
):
    return ok(service.prescribe(principal.tenant_id, principal.user_id, **body.model_dump()))


@router.get("", summary="List medications")
def list_medications(
    resident_id: Optional[UUID] = None,
    status: Optional[MedicationStatus] = None,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE)),
):
    return ok(service.list_medications(principal.tenant_id, resident_id, status))


@router.get("/doses", summary="List scheduled doses")
def list_doses(
    resident_id: Optional[UUID] = None,
    medication_id: Optional[UUID] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    status: Optional[DoseStatus] = None,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE)),
):
    return ok(service.list_doses(principal.tenant_id, resident_id, medication_id, since, until, status))


@router.post("/doses/{dose_id}/administration", summary="Record a dose outcome")
def record_administration(
    dose_id: UUID,
    body: AdministrationIn,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE)),
):
    return ok(service.record_administration(
        dose_id, principal.tenant_id, principal.user_id, body.outcome, body.notes
    ))


@router.post("/doses/mark-missed", summary="Mark overdue pending doses as missed")
def mark_missed_doses(
    grace_minutes: int = Query(default=60, ge=0),
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CLINICAL)),
):
    return ok(service.mark_missed_doses(principal.tenant_id, principal.user_id, grace_minutes=grace_minutes))


@router.get("/reminders", summary="Doses due soon")
def due_reminders(
    window_minutes: int = Query(default=30, ge=1),
    mark_sent: bool = True,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE)),
):
    return ok(service.due_reminders(principal.tenant_id, window_minutes, mark_sent))


@router.get("/adherence/{resident_id}", summary="Adherence metrics for a resident")
def calculate_adherence(
    resident_id: UUID,
    period_days: int = Query(default=30, ge=1, le=365),
    medication_id: Optional[UUID] = None,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles("nurse", "manager")),
):
    return ok(service.calculate_adherence(resident_id, principal.tenant_id, period_days, medication_id))


@router.get("/{medication_id}", summary="Get a medication")
def get_medication(
    medication_id: UUID,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE)),
):
    return ok(service.get_medication(medication_id, principal.tenant_id))


@router.post("/{medication_id}/discontinue", summary="Discontinue a medication")
def discontinue(
    medication_id: UUID,
    body: Reason,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CLINICAL)),
):
    return ok(service.discontinue(medication_id, principal.tenant_id, principal.user_id, body.reason))


@router.post("/{medication_id}/suspend", summary="Suspend a medication")
def suspend(
    medication_id: UUID,
    body: Reason,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CLINICAL)),
):
    return ok(service.suspend(medication_id, principal.tenant_id, principal.user_id, body.reason))


@router.post("/{medication_id}/resume", summary="Resume a suspended medication")
def resume(
    medication_id: UUID,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CLINICAL)),
):
    return ok(service.resume(medication_id, principal.tenant_id, principal.user_id))


@router.post("/{medication_id}/schedule", summary="Generate scheduled doses")
def generate_schedule(
    medication_id: UUID,
    body: ScheduleIn,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CLINICAL)),
):
    return ok(service.generate_schedule(
        medication_id, principal.tenant_id, principal.user_id, body.start_date, body.duration_days
    ))


@router.get("/{medication_id}/prn-check", summary="Can a PRN dose be given now?")
def can_administer_prn(
    medication_id: UUID,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE)),
):
    return ok(service.can_administer_prn(medication_id, principal.tenant_id))


@router.post("/{medication_id}/prn", status_code=201, summary="Record a PRN administration")
def record_prn_administration(
    medication_id: UUID,
    body: PRNIn,
    service: MedicationService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE)),
):
    return ok(service.record_prn_administration(
        medication_id, principal.tenant_id, principal.user_id, body.at, body.notes
    ))
