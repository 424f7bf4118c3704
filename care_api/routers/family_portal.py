"""Family members, their preferences, shared updates and dashboards."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from care_api.auth import Principal, require_roles
from care_api.deps import AuditDep, ClockDep, SessionDep, active_tenant
from care_api.envelope import ok
from care_modules.family_portal import (
    AccessLevel,
    ContactMethod,
    FamilyPortalService,
    UpdateFrequency,
    UpdateType,
    Visibility,
)

router = APIRouter(dependencies=[Depends(active_tenant)])

_CARE_TEAM = ("manager", "nurse")


class PreferencesIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    channels: Optional[list[ContactMethod]] = None
    frequency: Optional[UpdateFrequency] = None
    update_types: Optional[list[UpdateType]] = None
    emergency_notifications: Optional[bool] = None
    photo_sharing: Optional[bool] = None
    language: Optional[str] = None


class MemberCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resident_id: UUID
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    relationship: str = Field(min_length=1)
    email: str
    phone: Optional[str] = None
    access_level: AccessLevel = AccessLevel.STANDARD
    is_primary_contact: bool = False
    consent_given: bool = False
    preferences: Optional[PreferencesIn] = None


class Consent(BaseModel):
    given: bool


class UpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resident_id: UUID
    update_type: UpdateType
    title: str = Field(min_length=1, max_length=200)
    body: str = Field(min_length=1)
    visibility: Visibility = Visibility.ALL


def _service(session: SessionDep, clock: ClockDep, audit: AuditDep) -> FamilyPortalService:
    return FamilyPortalService(session, clock=clock, audit=audit)


@router.post("/members", status_code=201, summary="Add a family member")
def add_family_member(
    body: MemberCreate,
    service: FamilyPortalService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE_TEAM)),
):
    data = body.model_dump(exclude={"preferences"})
    preferences = (
        body.preferences.model_dump(mode="json", exclude_none=True) if body.preferences else None
    )
    return ok(service.add_family_member(
        principal.tenant_id, principal.user_id, preferences=preferences, **data
    ))


@router.get("/residents/{resident_id}/members", summary="Family members of a resident")
def list_family_members(
    resident_id: UUID,
    service: FamilyPortalService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE_TEAM, "carer")),
):
    return ok(service.list_family_members(principal.tenant_id, resident_id))


@router.get("/members/{member_id}", summary="Get a family member")
def get_family_member(
    member_id: UUID,
    service: FamilyPortalService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE_TEAM, "family")),
):
    return ok(service.get_family_member(member_id, principal.tenant_id))


@router.put("/members/{member_id}/consent", summary="Record portal consent")
def record_consent(
    member_id: UUID,
    body: Consent,
    service: FamilyPortalService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE_TEAM, "family")),
):
    return ok(service.record_consent(member_id, principal.tenant_id, principal.user_id, body.given))


@router.get("/members/{member_id}/preferences", summary="Communication preferences")
def get_preferences(
    member_id: UUID,
    service: FamilyPortalService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE_TEAM, "family")),
):
    return ok(service.get_preferences(member_id, principal.tenant_id))


@router.patch("/members/{member_id}/preferences", summary="Change communication preferences")
def update_preferences(
    member_id: UUID,
    body: PreferencesIn,
    service: FamilyPortalService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE_TEAM, "family")),
):
    return ok(service.update_preferences(
        member_id, principal.tenant_id, principal.user_id, **body.model_dump(exclude_unset=True)
    ))


@router.post("/updates", status_code=201, summary="Share an update with a resident's family")
def share_update(
    body: UpdateIn,
    service: FamilyPortalService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE_TEAM, "carer")),
):
    return ok(service.share_update(principal.tenant_id, principal.user_id, **body.model_dump()))


@router.get("/members/{member_id}/updates", summary="Recent updates visible to a member")
def list_recent_updates(
    member_id: UUID,
    limit: int = Query(default=20, ge=1, le=100),
    service: FamilyPortalService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE_TEAM, "family")),
):
    return ok(service.list_recent_updates(member_id, principal.tenant_id, limit))


@router.get("/members/{member_id}/dashboard", summary="Family dashboard")
def get_dashboard(
    member_id: UUID,
    service: FamilyPortalService = Depends(_service),
    principal: Principal = Depends(require_roles(*_CARE_TEAM, "family")),
):
    return ok(service.get_dashboard(member_id, principal.tenant_id))


@router.get("/statistics", summary="Portal take-up statistics")
def get_portal_statistics(
    service: FamilyPortalService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.get_portal_statistics(principal.tenant_id))
