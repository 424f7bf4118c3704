"""Bills, payments and funder claims."""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from care_api.auth import Principal, require_roles
from care_api.deps import AuditDep, ClockDep, SessionDep, active_tenant
from care_api.envelope import ok
from care_modules.billing.models import BillStatus, PayerType, PaymentMethod
from care_modules.billing.service import BillingService

router = APIRouter(dependencies=[Depends(active_tenant)])

_FINANCE = ("finance", "manager")


class LineIn(BaseModel):
    description: str = Field(min_length=1)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal


class BillCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resident_id: UUID
    period_start: date
    period_end: date
    lines: list[LineIn] = Field(min_length=1)
    payer_type: PayerType = PayerType.RESIDENT
    payer_reference: Optional[str] = None
    notes: Optional[str] = None


class BillGenerate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resident_id: UUID
    period_start: date
    period_end: date
    payer_type: PayerType = PayerType.RESIDENT
    payer_reference: Optional[str] = None
    extra_lines: list[LineIn] = []


class ClaimCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resident_id: UUID
    payer_type: PayerType
    payer_reference: str = Field(min_length=1)
    period_start: date
    period_end: date
    lines: Optional[list[LineIn]] = None


class IssueBill(BaseModel):
    issue_date: Optional[date] = None
    due_days: Optional[int] = Field(default=None, ge=0)


class WriteOff(BaseModel):
    reason: str = Field(min_length=1)


class PaymentIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(gt=0)
    method: PaymentMethod
    reference: Optional[str] = None
    received_on: Optional[date] = None


def _service(session: SessionDep, clock: ClockDep, audit: AuditDep) -> BillingService:
    return BillingService(session, clock=clock, audit=audit)


def _lines(lines):
    return [line.model_dump() for line in lines] if lines is not None else None


@router.post("/bills", status_code=201, summary="Create a draft bill")
def create_bill(
    body: BillCreate,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    data = body.model_dump(exclude={"lines"})
    return ok(service.create_bill(principal.tenant_id, principal.user_id, lines=_lines(body.lines), **data))


@router.post("/bills/generate", status_code=201, summary="Bill a resident's weekly fee for a period")
def generate_bill(
    body: BillGenerate,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    data = body.model_dump(exclude={"extra_lines"})
    return ok(service.generate_resident_bill(
        principal.tenant_id, principal.user_id, extra_lines=_lines(body.extra_lines), **data
    ))


@router.post("/claims", status_code=201, summary="Raise a claim against a funder")
def create_claim(
    body: ClaimCreate,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    data = body.model_dump(exclude={"lines"})
    return ok(service.create_claim(principal.tenant_id, principal.user_id, lines=_lines(body.lines), **data))


@router.get("/bills", summary="List bills")
def list_bills(
    resident_id: Optional[UUID] = None,
    status: Optional[BillStatus] = None,
    payer_type: Optional[PayerType] = None,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.list_bills(
        principal.tenant_id, resident_id=resident_id,
        status=status.value if status else None, payer_type=payer_type,
    ))


@router.get("/bills/{bill_id}", summary="Get a bill")
def get_bill(
    bill_id: UUID,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.get_bill(bill_id, principal.tenant_id))


@router.post("/bills/{bill_id}/issue", summary="Issue a draft bill")
def issue_bill(
    bill_id: UUID,
    body: IssueBill,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.issue_bill(bill_id, principal.tenant_id, principal.user_id, body.issue_date, body.due_days))


@router.post("/bills/{bill_id}/cancel", summary="Cancel a bill")
def cancel_bill(
    bill_id: UUID,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.cancel_bill(bill_id, principal.tenant_id, principal.user_id))


@router.post("/bills/{bill_id}/write-off", summary="Write off the outstanding balance")
def write_off(
    bill_id: UUID,
    body: WriteOff,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.write_off(bill_id, principal.tenant_id, principal.user_id, body.reason))


@router.post("/bills/mark-overdue", summary="Flag issued bills past their due date")
def mark_overdue(
    as_of: Optional[date] = None,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.mark_overdue(principal.tenant_id, principal.user_id, as_of))


@router.post("/bills/{bill_id}/payments", status_code=201, summary="Record a payment")
def record_payment(
    bill_id: UUID,
    body: PaymentIn,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.record_payment(bill_id, principal.tenant_id, principal.user_id, **body.model_dump()))


@router.get("/bills/{bill_id}/payments", summary="List payments against a bill")
def list_payments(
    bill_id: UUID,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.list_payments(bill_id, principal.tenant_id))


@router.get("/outstanding", summary="Outstanding balance")
def outstanding_balance(
    resident_id: Optional[UUID] = None,
    service: BillingService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok({"resident_id": resident_id, "outstanding": service.outstanding_balance(principal.tenant_id, resident_id)})
