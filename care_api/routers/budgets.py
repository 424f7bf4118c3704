"""Budgets: drafting, approval workflow, actuals and variance."""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from care_api.auth import Principal, require_roles
from care_api.deps import AuditDep, ClockDep, SessionDep, active_tenant
from care_api.envelope import ok
from care_modules.budget.models import BudgetStatus, BudgetType, LineType
from care_modules.budget.service import BudgetService

router = APIRouter(dependencies=[Depends(active_tenant)])

_FINANCE = ("finance", "manager")


class BudgetLineIn(BaseModel):
    category: str = Field(min_length=1)
    line_type: LineType
    budgeted_amount: Decimal = Field(ge=0)


class BudgetCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    budget_name: str = Field(min_length=1)
    budget_code: str = Field(min_length=1)
    budget_type: BudgetType
    financial_year: str
    start_date: date
    end_date: date
    lines: list[BudgetLineIn] = []
    care_home_id: Optional[UUID] = None
    currency: str = "GBP"
    description: Optional[str] = None


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    budget_name: Optional[str] = None
    budget_type: Optional[BudgetType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    care_home_id: Optional[UUID] = None


class Decision(BaseModel):
    notes: Optional[str] = None


class ActualIn(BaseModel):
    category: str = Field(min_length=1)
    amount: Decimal
    line_type: Optional[LineType] = None


def _service(session: SessionDep, clock: ClockDep, audit: AuditDep) -> BudgetService:
    return BudgetService(session, clock=clock, audit=audit)


@router.post("", status_code=201, summary="Create a draft budget")
def create_budget(
    body: BudgetCreate,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    data = body.model_dump(exclude={"lines"})
    lines = [line.model_dump() for line in body.lines]
    return ok(service.create_budget(principal.tenant_id, principal.user_id, lines=lines, **data))


@router.get("", summary="List budgets")
def list_budgets(
    financial_year: Optional[str] = None,
    status: Optional[BudgetStatus] = None,
    care_home_id: Optional[UUID] = None,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.list_budgets(principal.tenant_id, financial_year, status, care_home_id))


@router.get("/{budget_id}", summary="Get a budget")
def get_budget(
    budget_id: UUID,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.get_budget(budget_id, principal.tenant_id))


@router.patch("/{budget_id}", summary="Update a draft budget")
def update_budget(
    budget_id: UUID,
    body: BudgetUpdate,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.update_budget(
        budget_id, principal.tenant_id, principal.user_id, **body.model_dump(exclude_unset=True)
    ))


@router.post("/{budget_id}/submit", summary="Submit for approval")
def submit_budget(
    budget_id: UUID,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.submit_budget(budget_id, principal.tenant_id, principal.user_id))


@router.post("/{budget_id}/approve", summary="Approve a submitted budget")
def approve_budget(
    budget_id: UUID,
    body: Decision,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.approve_budget(budget_id, principal.tenant_id, principal.user_id, body.notes))


@router.post("/{budget_id}/reject", summary="Return a submitted budget to draft")
def reject_budget(
    budget_id: UUID,
    body: Decision,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.reject_budget(budget_id, principal.tenant_id, principal.user_id, body.notes))


@router.post("/{budget_id}/activate", summary="Activate an approved budget")
def activate_budget(
    budget_id: UUID,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.activate_budget(budget_id, principal.tenant_id, principal.user_id))


@router.post("/{budget_id}/close", summary="Close a budget")
def close_budget(
    budget_id: UUID,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.close_budget(budget_id, principal.tenant_id, principal.user_id))


@router.post("/{budget_id}/actuals", summary="Record actual spend or income")
def record_actual(
    budget_id: UUID,
    body: ActualIn,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.record_actual(budget_id, principal.tenant_id, principal.user_id, **body.model_dump()))


@router.get("/{budget_id}/variance", summary="Budget vs. actual variance")
def compute_variance(
    budget_id: UUID,
    service: BudgetService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.compute_variance(budget_id, principal.tenant_id))
