"""
Payroll ORM Persistence Models (``care_modules.payroll.orm``).

Responsibility:
    SQLAlchemy ORM models that persist the frozen dataclass DTOs defined in
    ``care_modules.payroll.models``.  Each ORM class mirrors a DTO and
    provides ``to_dto()`` / ``from_dto()`` round-trip conversion.

Architecture position:
    **Modules layer** -- persistence companions to the pure DTO models.
    Inherits from ``TenantScopedBase`` which provides id, tenant_id,
    care_home_id, created_at, updated_at, created_by_id and updated_by_id.

Invariants enforced:
    - All monetary fields use Decimal (maps to Numeric(38,9)) -- NEVER float.
    - Enum fields stored as String(50) containing the enum .value string.
    - employee_number and ni_number are unique per tenant.
    - run_number is unique per tenant; one payslip per employee per run.

Audit relevance:
    Payslips keep the tax code and NI category used, so a payslip can be
    re-derived from its inputs and the tax-year rate table.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from care_kernel.db.base import Money, TenantScopedBase, TrackedBase
from care_kernel.domain.money import money


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


# ---------------------------------------------------------------------------
# EmployeeModel
# ---------------------------------------------------------------------------

class EmployeeModel(TenantScopedBase):
    """
    ORM model for ``Employee``.

    Guarantees:
        - ``employee_number`` is unique per tenant (uq_payroll_employee_number).
        - ``ni_number`` is unique per tenant (uq_payroll_employee_ni).
    """

    __tablename__ = "payroll_employees"

    employee_number: Mapped[str] = mapped_column(String(50), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    ni_number: Mapped[str] = mapped_column(String(9), nullable=False)
    tax_code: Mapped[str] = mapped_column(String(20), nullable=False)
    ni_category: Mapped[str] = mapped_column(String(1), nullable=False)
    pay_basis: Mapped[str] = mapped_column(String(50), nullable=False)
    pay_frequency: Mapped[str] = mapped_column(String(50), nullable=False)
    employment_type: Mapped[str] = mapped_column(String(50), nullable=False)
    job_title: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    annual_salary: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    overtime_rate: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    contracted_hours_per_week: Mapped[Decimal] = mapped_column(nullable=False)
    pension_opt_out: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pension_employee_rate: Mapped[Decimal] = mapped_column(nullable=False)
    pension_employer_rate: Mapped[Decimal] = mapped_column(nullable=False)
    student_loan_plan: Mapped[str | None] = mapped_column(String(20), nullable=True)
    postgraduate_loan: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    bank_sort_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String(8), nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)

    registrations: Mapped[list["ProfessionalRegistrationModel"]] = relationship(
        back_populates="employee",
        cascade="all, delete-orphan",
        order_by="ProfessionalRegistrationModel.body",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "employee_number", name="uq_payroll_employee_number"),
        UniqueConstraint("tenant_id", "ni_number", name="uq_payroll_employee_ni"),
        Index("idx_payroll_employee_status", "tenant_id", "status"),
        Index("idx_payroll_employee_care_home", "care_home_id"),
    )

    def to_dto(self):
        from care_modules.payroll.models import (
            Employee,
            EmployeeStatus,
            EmploymentType,
            PayBasis,
            PayFrequency,
            StudentLoanPlan,
        )
        return Employee(
            id=self.id,
            tenant_id=self.tenant_id,
            care_home_id=self.care_home_id,
            employee_number=self.employee_number,
            first_name=self.first_name,
            last_name=self.last_name,
            ni_number=self.ni_number,
            tax_code=self.tax_code,
            ni_category=self.ni_category,
            pay_basis=PayBasis(self.pay_basis),
            pay_frequency=PayFrequency(self.pay_frequency),
            employment_type=EmploymentType(self.employment_type),
            job_title=self.job_title,
            email=self.email,
            phone=self.phone,
            annual_salary=money(self.annual_salary),
            hourly_rate=money(self.hourly_rate),
            overtime_rate=money(self.overtime_rate),
            contracted_hours_per_week=self.contracted_hours_per_week,
            pension_opt_out=self.pension_opt_out,
            pension_employee_rate=self.pension_employee_rate,
            pension_employer_rate=self.pension_employer_rate,
            student_loan_plan=(
                StudentLoanPlan(self.student_loan_plan) if self.student_loan_plan else None
            ),
            postgraduate_loan=self.postgraduate_loan,
            bank_sort_code=self.bank_sort_code,
            bank_account_number=self.bank_account_number,
            start_date=self.start_date,
            end_date=self.end_date,
            status=EmployeeStatus(self.status),
            registrations=tuple(r.to_dto() for r in self.registrations),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "EmployeeModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            care_home_id=dto.care_home_id,
            employee_number=dto.employee_number,
            first_name=dto.first_name,
            last_name=dto.last_name,
            ni_number=dto.ni_number,
            tax_code=dto.tax_code,
            ni_category=dto.ni_category,
            pay_basis=_enum_value(dto.pay_basis),
            pay_frequency=_enum_value(dto.pay_frequency),
            employment_type=_enum_value(dto.employment_type),
            job_title=dto.job_title,
            email=dto.email,
            phone=dto.phone,
            annual_salary=dto.annual_salary,
            hourly_rate=dto.hourly_rate,
            overtime_rate=dto.overtime_rate,
            contracted_hours_per_week=dto.contracted_hours_per_week,
            pension_opt_out=dto.pension_opt_out,
            pension_employee_rate=dto.pension_employee_rate,
            pension_employer_rate=dto.pension_employer_rate,
            student_loan_plan=_enum_value(dto.student_loan_plan),
            postgraduate_loan=dto.postgraduate_loan,
            bank_sort_code=dto.bank_sort_code,
            bank_account_number=dto.bank_account_number,
            start_date=dto.start_date,
            end_date=dto.end_date,
            status=_enum_value(dto.status),
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<EmployeeModel {self.employee_number}: {self.first_name} {self.last_name}>"


# ---------------------------------------------------------------------------
# ProfessionalRegistrationModel
# ---------------------------------------------------------------------------

class ProfessionalRegistrationModel(TrackedBase):
    """
    ORM model for ``ProfessionalRegistration``.

    Written in the same transaction as its employee.
    """

    __tablename__ = "payroll_professional_registrations"

    employee_id: Mapped[UUID] = mapped_column(ForeignKey("payroll_employees.id"), nullable=False)
    body: Mapped[str] = mapped_column(String(50), nullable=False)
    registration_number: Mapped[str] = mapped_column(String(50), nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    employee: Mapped[EmployeeModel] = relationship(back_populates="registrations")

    __table_args__ = (
        UniqueConstraint("body", "registration_number", name="uq_payroll_registration"),
        Index("idx_payroll_registration_employee", "employee_id"),
    )

    def to_dto(self):
        from care_modules.payroll.models import ProfessionalRegistration
        return ProfessionalRegistration(
            id=self.id,
            body=self.body,
            registration_number=self.registration_number,
            expiry_date=self.expiry_date,
        )

    @classmethod
    def from_dto(cls, dto, employee_id: UUID, created_by_id: UUID) -> "ProfessionalRegistrationModel":
        kwargs = dict(
            employee_id=employee_id,
            body=dto.body,
            registration_number=dto.registration_number,
            expiry_date=dto.expiry_date,
            created_by_id=created_by_id,
        )
        if dto.id is not None:
            kwargs["id"] = dto.id
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# PayrollRunModel
# ---------------------------------------------------------------------------

class PayrollRunModel(TenantScopedBase):
    """
    ORM model for ``PayrollRun``.

    Guarantees:
        - ``run_number`` is unique per tenant (uq_payroll_run_number).
        - ``status`` follows PAYROLL_RUN_WORKFLOW.
    """

    __tablename__ = "payroll_runs"

    run_number: Mapped[str] = mapped_column(String(20), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_frequency: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    tax_year: Mapped[str] = mapped_column(String(7), nullable=False)
    employee_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_gross: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    total_tax: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    total_employee_ni: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    total_employer_ni: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    total_pension_employee: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    total_pension_employer: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    total_student_loan: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    total_net: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    apprenticeship_levy: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "run_number", name="uq_payroll_run_number"),
        Index("idx_payroll_run_status", "tenant_id", "status"),
        Index("idx_payroll_run_pay_date", "pay_date"),
    )

    def to_dto(self):
        from care_modules.payroll.models import PayFrequency, PayrollRun, PayrollRunStatus
        return PayrollRun(
            id=self.id,
            tenant_id=self.tenant_id,
            care_home_id=self.care_home_id,
            run_number=self.run_number,
            period_start=self.period_start,
            period_end=self.period_end,
            pay_date=self.pay_date,
            pay_frequency=PayFrequency(self.pay_frequency),
            status=PayrollRunStatus(self.status),
            tax_year=self.tax_year,
            employee_count=self.employee_count,
            total_gross=money(self.total_gross),
            total_tax=money(self.total_tax),
            total_employee_ni=money(self.total_employee_ni),
            total_employer_ni=money(self.total_employer_ni),
            total_pension_employee=money(self.total_pension_employee),
            total_pension_employer=money(self.total_pension_employer),
            total_student_loan=money(self.total_student_loan),
            total_net=money(self.total_net),
            apprenticeship_levy=money(self.apprenticeship_levy),
            failure_reason=self.failure_reason,
        )

    def __repr__(self) -> str:
        return f"<PayrollRunModel {self.run_number} ({self.status})>"


# ---------------------------------------------------------------------------
# PayslipModel
# ---------------------------------------------------------------------------

class PayslipModel(TenantScopedBase):
    """
    ORM model for ``Payslip``.

    Guarantees:
        - One payslip per employee per run (uq_payslip_run_employee).
    """

    __tablename__ = "payroll_payslips"

    payroll_run_id: Mapped[UUID] = mapped_column(ForeignKey("payroll_runs.id"), nullable=False)
    employee_id: Mapped[UUID] = mapped_column(ForeignKey("payroll_employees.id"), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    tax_year: Mapped[str] = mapped_column(String(7), nullable=False)
    tax_code: Mapped[str] = mapped_column(String(20), nullable=False)
    ni_category: Mapped[str] = mapped_column(String(1), nullable=False)
    hours_worked: Mapped[Decimal | None] = mapped_column(nullable=True)
    overtime_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    basic_pay: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    overtime_pay: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    adjustments: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    gross_pay: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    income_tax: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    employee_ni: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    employer_ni: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    pension_employee: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    pension_employer: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    student_loan: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    postgraduate_loan: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    other_deductions: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    ytd_gross: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    ytd_tax: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    ytd_employee_ni: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    ytd_pension: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    ytd_student_loan: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    ytd_net: Mapped[Decimal] = mapped_column(Money(), nullable=False)

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="uq_payslip_run_employee"),
        Index("idx_payslip_employee_year", "employee_id", "tax_year"),
    )

    def to_dto(self):
        from care_modules.payroll.models import Payslip, YearToDate
        return Payslip(
            id=self.id,
            payroll_run_id=self.payroll_run_id,
            employee_id=self.employee_id,
            tenant_id=self.tenant_id,
            period_start=self.period_start,
            period_end=self.period_end,
            pay_date=self.pay_date,
            tax_code=self.tax_code,
            ni_category=self.ni_category,
            hours_worked=self.hours_worked,
            overtime_hours=self.overtime_hours,
            basic_pay=money(self.basic_pay),
            overtime_pay=money(self.overtime_pay),
            adjustments=money(self.adjustments),
            gross_pay=money(self.gross_pay),
            income_tax=money(self.income_tax),
            employee_ni=money(self.employee_ni),
            employer_ni=money(self.employer_ni),
            pension_employee=money(self.pension_employee),
            pension_employer=money(self.pension_employer),
            student_loan=money(self.student_loan),
            postgraduate_loan=money(self.postgraduate_loan),
            other_deductions=money(self.other_deductions),
            net_pay=money(self.net_pay),
            ytd=YearToDate(
                gross_pay=money(self.ytd_gross),
                tax=money(self.ytd_tax),
                employee_ni=money(self.ytd_employee_ni),
                pension=money(self.ytd_pension),
                student_loan=money(self.ytd_student_loan),
                net_pay=money(self.ytd_net),
            ),
        )

    def __repr__(self) -> str:
        return f"<PayslipModel run={self.payroll_run_id} employee={self.employee_id} net={self.net_pay}>"
