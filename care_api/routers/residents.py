"""Residents: admission, search, absence, discharge, GDPR consent."""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from care_api.auth import Principal, require_roles
from care_api.deps import AuditDep, ClockDep, SessionDep, active_tenant
from care_api.envelope import ok
from care_modules.residents.models import CareLevel, FundingSource, ResidentStatus
from care_modules.residents.service import ResidentService

router = APIRouter(dependencies=[Depends(active_tenant)])

_READ = ("manager", "nurse", "carer")
_WRITE = ("manager", "nurse")


class ResidentAdmit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: str
    last_name: str
    nhs_number: str
    date_of_birth: date
    admission_date: date
    care_level: CareLevel
    funding_source: FundingSource
    weekly_fee: Decimal = Field(ge=0)
    care_home_id: Optional[UUID] = None
    preferred_name: Optional[str] = None
    gender: Optional[str] = None
    room_number: Optional[str] = None
    allergies: list[str] = []
    medical_conditions: list[str] = []
    gp_name: Optional[str] = None
    next_of_kin_name: Optional[str] = None
    next_of_kin_phone: Optional[str] = None
    gdpr_consent_given: bool = False


class ResidentUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    preferred_name: Optional[str] = None
    gender: Optional[str] = None
    care_level: Optional[CareLevel] = None
    room_number: Optional[str] = None
    weekly_fee: Optional[Decimal] = Field(default=None, ge=0)
    funding_source: Optional[FundingSource] = None
    allergies: Optional[list[str]] = None
    medical_conditions: Optional[list[str]] = None
    gp_name: Optional[str] = None
    next_of_kin_name: Optional[str] = None
    next_of_kin_phone: Optional[str] = None
    care_home_id: Optional[UUID] = None


class Discharge(BaseModel):
    discharge_date: date
    reason: Optional[str] = None


class Consent(BaseModel):
    given: bool


def _service(session: SessionDep, clock: ClockDep, audit: AuditDep) -> ResidentService:
    return ResidentService(session, clock=clock, audit=audit)


@router.post("", status_code=201, summary="Admit a resident")
def admit_resident(
    body: ResidentAdmit,
    service: ResidentService = Depends(_service),
    principal: Principal = Depends(require_roles(*_WRITE)),
):
    return ok(service.admit_resident(principal.tenant_id, principal.user_id, **body.model_dump()))


@router.get("", summary="Search residents")
def search_residents(
    service: ResidentService = Depends(_service),
    principal: Principal = Depends(require_roles(*_READ)),
    care_home_id: Optional[UUID] = None,
    status: Optional[ResidentStatus] = None,
    q: Optional[str] = Query(default=None, description="Name fragment"),
    care_level: Optional[CareLevel] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    residents, total = service.search_residents(
        principal.tenant_id, care_home_id=care_home_id, status=status, name_query=q,
        care_level=care_level, limit=limit, offset=offset,
    )
    return ok({"items": residents, "total": total, "limit": limit, "offset": offset})


@router.get("/counts", summary="Residents by status")
def count_by_status(
    care_home_id: Optional[UUID] = None,
    service: ResidentService = Depends(_service),
    principal: Principal = Depends(require_roles(*_READ)),
):
    return ok(service.count_by_status(principal.tenant_id, care_home_id))


@router.get("/{resident_id}", summary="Get a resident")
def get_resident(
    resident_id: UUID,
    service: ResidentService = Depends(_service),
    principal: Principal = Depends(require_roles(*_READ)),
):
    return ok(service.get_resident(resident_id, principal.tenant_id))


@router.patch("/{resident_id}", summary="Update a resident")
def update_resident(
    resident_id: UUID,
    body: ResidentUpdate,
    service: ResidentService = Depends(_service),
    principal: Principal = Depends(require_roles(*_WRITE)),
):
    return ok(service.update_resident(
        resident_id, principal.tenant_id, principal.user_id, **body.model_dump(exclude_unset=True)
    ))


@router.post("/{resident_id}/discharge", summary="Discharge a resident")
def discharge_resident(
    resident_id: UUID,
    body: Discharge,
    service: ResidentService = Depends(_service),
    principal: Principal = Depends(require_roles(*_WRITE)),
):
    return ok(service.discharge_resident(
        resident_id, principal.tenant_id, principal.user_id, body.discharge_date, body.reason
    ))


@router.post("/{resident_id}/absence/start", summary="Start a temporary absence")
def start_absence(
    resident_id: UUID,
    service: ResidentService = Depends(_service),
    principal: Principal = Depends(require_roles(*_WRITE)),
):
    return ok(service.start_absence(resident_id, principal.tenant_id, principal.user_id))


@router.post("/{resident_id}/absence/end", summary="End a temporary absence")
def end_absence(
    resident_id: UUID,
    service: ResidentService = Depends(_service),
    principal: Principal = Depends(require_roles(*_WRITE)),
):
    return ok(service.end_absence(resident_id, principal.tenant_id, principal.user_id))


@router.put("/{resident_id}/gdpr-consent", summary="Record GDPR consent")
def record_gdpr_consent(
    resident_id: UUID,
    body: Consent,
    service: ResidentService = Depends(_service),
    principal: Principal = Depends(require_roles(*_WRITE)),
):
    return ok(service.record_gdpr_consent(resident_id, principal.tenant_id, principal.user_id, body.given))
