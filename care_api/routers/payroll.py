"""Employees, gross-to-net calculation and payroll runs."""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from care_api.auth import Principal, require_roles
from care_api.deps import AuditDep, ClockDep, SessionDep, active_tenant
from care_api.envelope import ok
from care_modules.payroll.models import (
    EmploymentType,
    PayBasis,
    PayFrequency,
    PayrollRunStatus,
    ProfessionalRegistration,
    StudentLoanPlan,
)
from care_modules.payroll.service import PayrollService

router = APIRouter(dependencies=[Depends(active_tenant)])

_PAYROLL = ("hr", "finance")


class RegistrationIn(BaseModel):
    body: str
    registration_number: str
    expiry_date: Optional[date] = None


class EmployeeCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    employee_number: str = Field(min_length=1)
    first_name: str
    last_name: str
    ni_number: str
    start_date: date
    pay_basis: PayBasis = PayBasis.SALARIED
    annual_salary: Optional[Decimal] = Field(default=None, ge=0)
    hourly_rate: Optional[Decimal] = Field(default=None, ge=0)
    tax_code: str = "1257L"
    ni_category: str = "A"
    pay_frequency: Optional[PayFrequency] = None
    employment_type: EmploymentType = EmploymentType.FULL_TIME
    care_home_id: Optional[UUID] = None
    job_title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    overtime_rate: Optional[Decimal] = None
    contracted_hours_per_week: Optional[Decimal] = None
    pension_opt_out: bool = False
    pension_employee_rate: Optional[Decimal] = None
    pension_employer_rate: Optional[Decimal] = None
    student_loan_plan: Optional[StudentLoanPlan] = None
    postgraduate_loan: bool = False
    bank_sort_code: Optional[str] = None
    bank_account_number: Optional[str] = None
    registrations: list[RegistrationIn] = []


class EmployeeUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    job_title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    tax_code: Optional[str] = None
    ni_category: Optional[str] = None
    pay_frequency: Optional[PayFrequency] = None
    annual_salary: Optional[Decimal] = None
    hourly_rate: Optional[Decimal] = None
    overtime_rate: Optional[Decimal] = None
    contracted_hours_per_week: Optional[Decimal] = None
    pension_opt_out: Optional[bool] = None
    pension_employee_rate: Optional[Decimal] = None
    pension_employer_rate: Optional[Decimal] = None
    student_loan_plan: Optional[StudentLoanPlan] = None
    postgraduate_loan: Optional[bool] = None
    bank_sort_code: Optional[str] = None
    bank_account_number: Optional[str] = None
    care_home_id: Optional[UUID] = None


class Leaver(BaseModel):
    end_date: date


class GrossToNetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    gross_pay: Decimal = Field(ge=0)
    tax_code: str = "1257L"
    ni_category: str = "A"
    frequency: PayFrequency = PayFrequency.MONTHLY
    pension_opt_out: bool = False
    pension_employee_rate: Optional[Decimal] = None
    pension_employer_rate: Optional[Decimal] = None
    student_loan_plan: Optional[StudentLoanPlan] = None
    postgraduate_loan: bool = False
    other_deductions: Decimal = Field(default=Decimal("0"), ge=0)
    tax_year: Optional[str] = None


class RunCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    period_start: date
    period_end: date
    pay_date: date
    care_home_id: Optional[UUID] = None
    pay_frequency: Optional[PayFrequency] = None


class RunInputs(BaseModel):
    """Per-employee inputs for the period, keyed by employee id."""

    model_config = ConfigDict(extra="forbid")

    hours: dict[UUID, Decimal] = {}
    overtime_hours: dict[UUID, Decimal] = {}
    adjustments: dict[UUID, Decimal] = {}
    other_deductions: dict[UUID, Decimal] = {}


def _service(session: SessionDep, clock: ClockDep, audit: AuditDep) -> PayrollService:
    return PayrollService(session, clock=clock, audit=audit)


@router.post("/employees", status_code=201, summary="Create an employee")
def create_employee(
    body: EmployeeCreate,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles(*_PAYROLL)),
):
    data = body.model_dump(exclude={"registrations"})
    registrations = [ProfessionalRegistration(**r.model_dump()) for r in body.registrations]
    return ok(service.create_employee(
        principal.tenant_id, principal.user_id, registrations=registrations, **data
    ))


@router.get("/employees", summary="List employees")
def list_employees(
    care_home_id: Optional[UUID] = None,
    active_only: bool = True,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles(*_PAYROLL)),
):
    return ok(service.list_employees(principal.tenant_id, care_home_id, active_only))


@router.get("/employees/{employee_id}", summary="Get an employee")
def get_employee(
    employee_id: UUID,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles(*_PAYROLL)),
):
    return ok(service.get_employee(employee_id, principal.tenant_id))


@router.patch("/employees/{employee_id}", summary="Update an employee")
def update_employee(
    employee_id: UUID,
    body: EmployeeUpdate,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles(*_PAYROLL)),
):
    return ok(service.update_employee(
        employee_id, principal.tenant_id, principal.user_id, **body.model_dump(exclude_unset=True)
    ))


@router.post("/employees/{employee_id}/leave", summary="Record a leaver")
def deactivate_employee(
    employee_id: UUID,
    body: Leaver,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles("hr")),
):
    return ok(service.deactivate_employee(employee_id, principal.tenant_id, principal.user_id, body.end_date))


@router.post("/calculate", summary="Gross-to-net for one pay period")
def calculate_gross_to_net(
    body: GrossToNetIn,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles(*_PAYROLL)),
):
    return ok(service.calculate_gross_to_net(**body.model_dump()))


@router.post("/runs", status_code=201, summary="Create a draft payroll run")
def create_payroll_run(
    body: RunCreate,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles(*_PAYROLL)),
):
    return ok(service.create_payroll_run(
        tenant_id=principal.tenant_id, actor_id=principal.user_id, **body.model_dump()
    ))


@router.get("/runs", summary="List payroll runs")
def list_payroll_runs(
    status: Optional[PayrollRunStatus] = None,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles(*_PAYROLL)),
):
    return ok(service.list_payroll_runs(principal.tenant_id, status))


@router.get("/runs/{run_id}", summary="Get a payroll run")
def get_payroll_run(
    run_id: UUID,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles(*_PAYROLL)),
):
    return ok(service.get_payroll_run(run_id, principal.tenant_id))


@router.post("/runs/{run_id}/process", summary="Calculate payslips for every employee in the run")
def process_payroll_run(
    run_id: UUID,
    body: RunInputs,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles("finance")),
):
    return ok(service.process_payroll_run(run_id, principal.tenant_id, principal.user_id, **body.model_dump()))


@router.post("/runs/{run_id}/cancel", summary="Cancel a draft run")
def cancel_payroll_run(
    run_id: UUID,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles(*_PAYROLL)),
):
    return ok(service.cancel_payroll_run(run_id, principal.tenant_id, principal.user_id))


@router.get("/runs/{run_id}/payslips", summary="Payslips for a run")
def list_payslips(
    run_id: UUID,
    service: PayrollService = Depends(_service),
    principal: Principal = Depends(require_roles(*_PAYROLL)),
):
    return ok(service.list_payslips(run_id, principal.tenant_id))
