"""
Payroll Domain Models (``care_modules.payroll.models``).

Responsibility
--------------
Frozen dataclass value objects representing the nouns of UK payroll:
employees and their professional registrations, parsed tax codes, the
per-deduction calculation results, payroll runs and payslips.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by
``helpers.py`` and ``PayrollService`` and returned to callers.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* Net pay equals gross pay minus every employee deduction.

Failure modes
-------------
* Construction with negative pay or an inconsistent breakdown raises
  ``ValueError``.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from care_kernel.logging_config import get_logger

logger = get_logger("modules.payroll.models")


class PayFrequency(Enum):
    """Pay frequencies."""
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    FOUR_WEEKLY = "four_weekly"
    MONTHLY = "monthly"


class EmploymentType(Enum):
    FULL_TIME = "full_time"
    PART_TIME = "part_time"
    BANK = "bank"
    AGENCY = "agency"
    APPRENTICE = "apprentice"


class PayBasis(Enum):
    """How basic pay is derived."""
    SALARIED = "salaried"
    HOURLY = "hourly"


class StudentLoanPlan(Enum):
    PLAN_1 = "plan1"
    PLAN_2 = "plan2"
    PLAN_4 = "plan4"
    PLAN_5 = "plan5"
    POSTGRAD = "postgrad"


class EmployeeStatus(Enum):
    ACTIVE = "active"
    ON_LEAVE = "on_leave"
    LEFT = "left"


class PayrollRunStatus(Enum):
    """Payroll run lifecycle states."""
    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProfessionalRegistration:
    """A clinical/professional registration held by an employee (NMC, HCPC, ...)."""
    body: str
    registration_number: str
    expiry_date: date | None = None
    id: UUID | None = None

    def is_expired(self, as_of: date) -> bool:
        return self.expiry_date is not None and self.expiry_date < as_of


@dataclass(frozen=True)
class Employee:
    """An employee of a care home, as seen by payroll."""
    id: UUID
    tenant_id: UUID
    employee_number: str
    first_name: str
    last_name: str
    ni_number: str
    tax_code: str
    ni_category: str
    pay_basis: PayBasis
    pay_frequency: PayFrequency
    employment_type: EmploymentType
    start_date: date
    care_home_id: UUID | None = None
    job_title: str | None = None
    email: str | None = None
    phone: str | None = None
    annual_salary: Decimal | None = None
    hourly_rate: Decimal | None = None
    overtime_rate: Decimal | None = None
    contracted_hours_per_week: Decimal = Decimal("37.5")
    pension_opt_out: bool = False
    pension_employee_rate: Decimal = Decimal("5")
    pension_employer_rate: Decimal = Decimal("3")
    student_loan_plan: StudentLoanPlan | None = None
    postgraduate_loan: bool = False
    bank_sort_code: str | None = None
    bank_account_number: str | None = None
    end_date: date | None = None
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    registrations: tuple[ProfessionalRegistration, ...] = ()

    def __post_init__(self):
        if self.pay_basis == PayBasis.SALARIED and (
            self.annual_salary is None or self.annual_salary <= 0
        ):
            raise ValueError("Salaried employee must have a positive annual_salary")
        if self.pay_basis == PayBasis.HOURLY and (
            self.hourly_rate is None or self.hourly_rate <= 0
        ):
            raise ValueError("Hourly employee must have a positive hourly_rate")
        if self.contracted_hours_per_week < 0:
            raise ValueError("contracted_hours_per_week cannot be negative")
        # Zero-hours contracts are hourly only
        if self.pay_basis == PayBasis.SALARIED and self.contracted_hours_per_week == 0:
            raise ValueError("Salaried employee must have positive contracted_hours_per_week")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date cannot precede start_date")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.status != EmployeeStatus.LEFT


@dataclass(frozen=True)
class TaxCode:
    """A parsed PAYE tax code.

    ``allowance`` is annual and negative for K codes.  ``flat_rate_key`` is
    set for BR/D0/D1/D2, ``no_tax`` for NT.
    """
    raw: str
    allowance: Decimal
    regime: str = "rUK"
    flat_rate_key: str | None = None
    no_tax: bool = False
    is_emergency: bool = False

    @property
    def is_k_code(self) -> bool:
        return self.allowance < 0


@dataclass(frozen=True)
class TaxBandResult:
    name: str
    rate: Decimal
    taxable_amount: Decimal
    tax: Decimal


@dataclass(frozen=True)
class TaxCalculation:
    """Per-period income tax."""
    tax_code: str
    gross_pay: Decimal
    taxable_pay: Decimal
    tax: Decimal
    bands: tuple[TaxBandResult, ...] = ()
    k_code_capped: bool = False

    @property
    def effective_rate(self) -> Decimal:
        if self.gross_pay <= 0:
            return Decimal("0")
        return (self.tax / self.gross_pay * 100).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class NICalculation:
    category: str
    employee_contribution: Decimal
    employer_contribution: Decimal


@dataclass(frozen=True)
class PensionCalculation:
    qualifying_earnings: Decimal
    employee_contribution: Decimal
    employer_contribution: Decimal
    opted_out: bool = False


@dataclass(frozen=True)
class PayInputs:
    """Everything the gross-to-net calculator needs for one period."""
    gross_pay: Decimal
    tax_code: str = "1257L"
    ni_category: str = "A"
    frequency: PayFrequency = PayFrequency.MONTHLY
    pension_opt_out: bool = False
    pension_employee_rate: Decimal = Decimal("5")
    pension_employer_rate: Decimal = Decimal("3")
    student_loan_plan: StudentLoanPlan | None = None
    postgraduate_loan: bool = False
    other_deductions: Decimal = Decimal("0")

    def __post_init__(self):
        if self.gross_pay < 0:
            raise ValueError("gross_pay cannot be negative")
        if self.other_deductions < 0:
            raise ValueError("other_deductions cannot be negative")
        if not (Decimal("0") <= self.pension_employee_rate <= Decimal("100")):
            raise ValueError("pension_employee_rate must be between 0 and 100")


@dataclass(frozen=True)
class DeductionBreakdown:
    """Gross-to-net result for one period."""
    gross_pay: Decimal
    income_tax: TaxCalculation
    national_insurance: NICalculation
    pension: PensionCalculation
    student_loan: Decimal
    postgraduate_loan: Decimal
    other_deductions: Decimal
    net_pay: Decimal

    def __post_init__(self):
        expected = self.gross_pay - self.total_employee_deductions
        if expected != self.net_pay:
            logger.error(
                "deduction_breakdown_inconsistent",
                extra={"expected": str(expected), "net_pay": str(self.net_pay)},
            )
            raise ValueError("net_pay must equal gross_pay minus deductions")

    @property
    def total_employee_deductions(self) -> Decimal:
        return (
            self.income_tax.tax
            + self.national_insurance.employee_contribution
            + self.pension.employee_contribution
            + self.student_loan
            + self.postgraduate_loan
            + self.other_deductions
        )

    @property
    def employer_cost(self) -> Decimal:
        return (
            self.gross_pay
            + self.national_insurance.employer_contribution
            + self.pension.employer_contribution
        )


@dataclass(frozen=True)
class YearToDate:
    gross_pay: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    employee_ni: Decimal = Decimal("0")
    pension: Decimal = Decimal("0")
    student_loan: Decimal = Decimal("0")
    net_pay: Decimal = Decimal("0")


@dataclass(frozen=True)
class Payslip:
    id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    tenant_id: UUID
    period_start: date
    period_end: date
    pay_date: date
    tax_code: str
    ni_category: str
    basic_pay: Decimal
    overtime_pay: Decimal
    adjustments: Decimal
    gross_pay: Decimal
    income_tax: Decimal
    employee_ni: Decimal
    employer_ni: Decimal
    pension_employee: Decimal
    pension_employer: Decimal
    student_loan: Decimal
    postgraduate_loan: Decimal
    other_deductions: Decimal
    net_pay: Decimal
    hours_worked: Decimal | None = None
    overtime_hours: Decimal | None = None
    ytd: YearToDate = field(default_factory=YearToDate)


@dataclass(frozen=True)
class PayrollRun:
    id: UUID
    tenant_id: UUID
    run_number: str
    period_start: date
    period_end: date
    pay_date: date
    pay_frequency: PayFrequency
    status: PayrollRunStatus
    tax_year: str
    care_home_id: UUID | None = None
    employee_count: int = 0
    total_gross: Decimal = Decimal("0")
    total_tax: Decimal = Decimal("0")
    total_employee_ni: Decimal = Decimal("0")
    total_employer_ni: Decimal = Decimal("0")
    total_pension_employee: Decimal = Decimal("0")
    total_pension_employer: Decimal = Decimal("0")
    total_student_loan: Decimal = Decimal("0")
    total_net: Decimal = Decimal("0")
    apprenticeship_levy: Decimal = Decimal("0")
    failure_reason: str | None = None
