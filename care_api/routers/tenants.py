"""Tenants and care homes."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from care_api.auth import Principal, get_principal, require_roles
from care_api.deps import SessionDep
from care_api.envelope import ok
from care_kernel.exceptions import TenantIsolationError
from care_kernel.models.tenant import TenantStatus
from care_kernel.services.tenant_service import TenantService
from care_modules._service_helpers import transaction

router = APIRouter()


class TenantCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=1, max_length=100)
    subscription_tier: str = "standard"
    contact_email: Optional[str] = None


class TenantUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    subscription_tier: Optional[str] = None
    contact_email: Optional[str] = None


class CareHomeCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    registration_number: str = Field(min_length=1)
    region: Optional[str] = None
    capacity: int = Field(default=0, ge=0)
    contact_phone: Optional[str] = None


def _own_tenant(principal: Principal, tenant_id: UUID) -> None:
    if tenant_id != principal.tenant_id and not principal.is_admin:
        raise TenantIsolationError("Tenant", tenant_id)


@router.post("", status_code=201, summary="Create a tenant")
def create_tenant(
    body: TenantCreate,
    session: SessionDep,
    principal: Principal = Depends(require_roles("admin")),
):
    with transaction(session, "create_tenant"):
        tenant = TenantService(session).create_tenant(actor_id=principal.user_id, **body.model_dump())
    return ok(tenant)


@router.get("", summary="List tenants")
def list_tenants(
    session: SessionDep,
    status: Optional[TenantStatus] = None,
    principal: Principal = Depends(require_roles("admin")),
):
    return ok(TenantService(session).list_tenants(status))


@router.get("/me", summary="The caller's tenant")
def current_tenant(session: SessionDep, principal: Principal = Depends(get_principal)):
    return ok(TenantService(session).get_tenant(principal.tenant_id))


@router.patch("/{tenant_id}", summary="Update a tenant")
def update_tenant(
    tenant_id: UUID,
    body: TenantUpdate,
    session: SessionDep,
    principal: Principal = Depends(require_roles("manager")),
):
    _own_tenant(principal, tenant_id)
    with transaction(session, "update_tenant"):
        tenant = TenantService(session).update_tenant(
            tenant_id, principal.user_id, **body.model_dump(exclude_unset=True)
        )
    return ok(tenant)


@router.post("/{tenant_id}/suspend", summary="Suspend a tenant")
def suspend_tenant(tenant_id: UUID, session: SessionDep, principal: Principal = Depends(require_roles("admin"))):
    with transaction(session, "suspend_tenant"):
        tenant = TenantService(session).suspend_tenant(tenant_id, principal.user_id)
    return ok(tenant)


@router.post("/{tenant_id}/activate", summary="Reactivate a tenant")
def activate_tenant(tenant_id: UUID, session: SessionDep, principal: Principal = Depends(require_roles("admin"))):
    with transaction(session, "activate_tenant"):
        tenant = TenantService(session).activate_tenant(tenant_id, principal.user_id)
    return ok(tenant)


@router.post("/me/care-homes", status_code=201, summary="Add a care home")
def add_care_home(
    body: CareHomeCreate,
    session: SessionDep,
    principal: Principal = Depends(require_roles("manager")),
):
    with transaction(session, "add_care_home"):
        home = TenantService(session).add_care_home(
            tenant_id=principal.tenant_id, actor_id=principal.user_id, **body.model_dump()
        )
    return ok(home)


@router.get("/me/care-homes", summary="List care homes")
def list_care_homes(
    session: SessionDep,
    active_only: bool = False,
    principal: Principal = Depends(get_principal),
):
    return ok(TenantService(session).list_care_homes(principal.tenant_id, active_only=active_only))
