"""
Payroll Module Service (``care_modules.payroll.service``).

Responsibility
--------------
Orchestrates payroll operations: employee records (with professional
registrations), gross-to-net calculation, payroll run creation and
processing into payslips with year-to-date figures and run totals.  Pure
arithmetic is delegated to ``helpers.py``; statutory rates come from
``care_config``.

Architecture position
---------------------
**Modules layer** -- ``PayrollService`` is the sole public entry point for
payroll operations.  It owns the transaction boundary of every mutating
method.

Invariants enforced
-------------------
* Each public mutating method commits on success and rolls back on any
  exception.
* An employee and their professional registrations are written in ONE
  transaction.
* Employee number and NI number are unique per tenant.
* Payroll runs follow ``PAYROLL_RUN_WORKFLOW``; a failed run returns to
  ``draft`` with its failure reason recorded.

Failure modes
-------------
* Invalid NI number / tax code / phone / sort code  -> ``ValidationError``
  subclass.
* Duplicate employee number or NI number  -> ``DuplicateEntityError``.
* Action not allowed from current run status  -> ``InvalidTransitionError``.
* No employees in scope for a run  -> ``BusinessRuleError``.

Audit relevance
---------------
Structured log events at every commit carry run ids, employee counts and
totals.  Every mutation is recorded through ``AuditService``.

Usage::

    service = PayrollService(session, clock=clock)
    breakdown = service.calculate_gross_to_net(Decimal("3000.00"))
    assert breakdown.net_pay == Decimal("2329.30")
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from care_config import get_active_config, tax_year_for
from care_config.schema import TaxYearRates
from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.domain.validation import (
    require,
    validate_email,
    validate_ni_number,
    validate_sort_code,
    validate_uk_phone,
)
from care_kernel.exceptions import (
    BusinessRuleError,
    DuplicateEntityError,
    EmployeeNotFoundError,
    PayrollRunNotFoundError,
    ValidationError,
)
from care_kernel.logging_config import get_logger
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import (
    apply_changes,
    get_scoped,
    next_document_number,
    transaction,
)
from care_modules.payroll.config import PayrollConfig
from care_modules.payroll.helpers import (
    WEEKS_PER_PERIOD,
    calculate_apprenticeship_levy,
    calculate_payslip_deductions,
    parse_tax_code,
    periods_per_year,
)
from care_modules.payroll.models import (
    DeductionBreakdown,
    Employee,
    EmployeeStatus,
    EmploymentType,
    PayBasis,
    PayFrequency,
    PayInputs,
    Payslip,
    PayrollRun,
    PayrollRunStatus,
    ProfessionalRegistration,
    StudentLoanPlan,
)
from care_modules.payroll.orm import (
    EmployeeModel,
    PayrollRunModel,
    PayslipModel,
    ProfessionalRegistrationModel,
)
from care_modules.payroll.workflows import PAYROLL_RUN_WORKFLOW

logger = get_logger("modules.payroll.service")

TWO_PLACES = Decimal("0.01")

_UPDATABLE_EMPLOYEE_FIELDS = (
    "first_name",
    "last_name",
    "job_title",
    "email",
    "phone",
    "tax_code",
    "ni_category",
    "pay_frequency",
    "annual_salary",
    "hourly_rate",
    "overtime_rate",
    "contracted_hours_per_week",
    "pension_opt_out",
    "pension_employee_rate",
    "pension_employer_rate",
    "student_loan_plan",
    "postgraduate_loan",
    "bank_sort_code",
    "bank_account_number",
    "care_home_id",
)


def _q(amount: Decimal) -> Decimal:
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class PayrollService:
    """
    Employee records and payroll runs for one tenant at a time.

    Contract
    --------
    * Every method takes ``tenant_id`` explicitly and never returns rows
      belonging to another tenant.
    * Returns frozen DTOs, never ORM rows.

    Non-goals
    ---------
    * Does NOT submit RTI (FPS/EPS) to HMRC.
    * Does NOT apply cumulative PAYE; every period is calculated on the
      annualised basis.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: PayrollConfig | None = None,
        audit: AuditService | None = None,
        rates_provider: Callable[[str], TaxYearRates] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or PayrollConfig.with_defaults()
        self._audit = audit or AuditService(session, clock=self._clock)
        self._rates_provider = rates_provider or (
            lambda tax_year: get_active_config(tax_year=tax_year)
        )

    # -------------------------------------------------------------------------
    # Rates
    # -------------------------------------------------------------------------

    def _tax_year(self, pay_date: date) -> str:
        return self._config.tax_year or tax_year_for(pay_date)

    def _rates(self, pay_date: date | None = None, tax_year: str | None = None) -> TaxYearRates:
        if tax_year is None:
            tax_year = self._tax_year(pay_date or self._clock.today())
        return self._rates_provider(tax_year)

    # -------------------------------------------------------------------------
    # Employees
    # -------------------------------------------------------------------------

    def _validate_ni_category(self, category: str) -> str:
        letter = (category or "").strip().upper()
        if letter not in self._rates().ni_categories:
            raise ValidationError(f"Unknown NI category: {category!r}", "ni_category")
        return letter

    def _check_unique(self, tenant_id: UUID, employee_number: str, ni_number: str) -> None:
        clash = self._session.execute(
            select(EmployeeModel.employee_number, EmployeeModel.ni_number).where(
                EmployeeModel.tenant_id == tenant_id,
                (EmployeeModel.employee_number == employee_number)
                | (EmployeeModel.ni_number == ni_number),
            )
        ).first()
        if clash is None:
            return
        if clash.employee_number == employee_number:
            raise DuplicateEntityError("Employee", "employee_number", employee_number)
        raise DuplicateEntityError("Employee", "ni_number", ni_number)

    def create_employee(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        employee_number: str,
        first_name: str,
        last_name: str,
        ni_number: str,
        start_date: date,
        pay_basis: PayBasis = PayBasis.SALARIED,
        annual_salary: Decimal | None = None,
        hourly_rate: Decimal | None = None,
        tax_code: str = "1257L",
        ni_category: str = "A",
        pay_frequency: PayFrequency | None = None,
        employment_type: EmploymentType = EmploymentType.FULL_TIME,
        care_home_id: UUID | None = None,
        job_title: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        overtime_rate: Decimal | None = None,
        contracted_hours_per_week: Decimal | None = None,
        pension_opt_out: bool = False,
        pension_employee_rate: Decimal | None = None,
        pension_employer_rate: Decimal | None = None,
        student_loan_plan: StudentLoanPlan | None = None,
        postgraduate_loan: bool = False,
        bank_sort_code: str | None = None,
        bank_account_number: str | None = None,
        registrations: Sequence[ProfessionalRegistration] = (),
    ) -> Employee:
        """
        Create an employee and their professional registrations atomically.

        Raises:
            ValidationError: on any invalid field.
            DuplicateEntityError: employee number or NI number already used.
        """
        require(employee_number, "employee_number")
        require(first_name, "first_name")
        require(last_name, "last_name")
        ni_number = validate_ni_number(ni_number)
        tax_code = parse_tax_code(tax_code).raw
        ni_category = self._validate_ni_category(ni_category)
        if bank_account_number is not None and not (
            bank_account_number.isdigit() and len(bank_account_number) == 8
        ):
            raise ValidationError("bank_account_number must be 8 digits", "bank_account_number")

        try:
            employee = Employee(
                id=uuid4(),
                tenant_id=tenant_id,
                care_home_id=care_home_id,
                employee_number=employee_number.strip(),
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                ni_number=ni_number,
                tax_code=tax_code,
                ni_category=ni_category,
                pay_basis=pay_basis,
                pay_frequency=pay_frequency or PayFrequency(self._config.default_pay_frequency),
                employment_type=employment_type,
                start_date=start_date,
                job_title=job_title,
                email=validate_email(email) if email else None,
                phone=validate_uk_phone(phone) if phone else None,
                annual_salary=annual_salary,
                hourly_rate=hourly_rate,
                overtime_rate=overtime_rate,
                contracted_hours_per_week=(
                    self._config.default_contracted_hours
                    if contracted_hours_per_week is None else contracted_hours_per_week
                ),
                pension_opt_out=pension_opt_out,
                pension_employee_rate=(
                    self._config.default_employee_pension_rate
                    if pension_employee_rate is None else pension_employee_rate
                ),
                pension_employer_rate=(
                    self._config.default_employer_pension_rate
                    if pension_employer_rate is None else pension_employer_rate
                ),
                student_loan_plan=student_loan_plan,
                postgraduate_loan=postgraduate_loan,
                bank_sort_code=validate_sort_code(bank_sort_code) if bank_sort_code else None,
                bank_account_number=bank_account_number,
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        for reg in registrations:
            require(reg.body, "registration.body")
            require(reg.registration_number, "registration.registration_number")

        with transaction(self._session, "create_employee"):
            self._check_unique(tenant_id, employee.employee_number, employee.ni_number)
            orm = EmployeeModel.from_dto(employee, created_by_id=actor_id)
            self._session.add(orm)
            self._session.flush()
            for reg in registrations:
                self._session.add(
                    ProfessionalRegistrationModel.from_dto(reg, orm.id, created_by_id=actor_id)
                )
            self._session.flush()
            self._session.refresh(orm)
            self._audit.record(
                "EMPLOYEE_CREATED", "Employee", orm.id, tenant_id=tenant_id,
                actor_id=actor_id, details={"registrations": len(registrations)},
            )
            result = orm.to_dto()

        logger.info(
            "employee_created",
            extra={
                "employee_id": str(result.id),
                "employee_number": result.employee_number,
                "registrations": len(result.registrations),
            },
        )
        return result

    def _get_employee(self, employee_id: UUID, tenant_id: UUID) -> EmployeeModel:
        return get_scoped(self._session, EmployeeModel, employee_id, tenant_id, EmployeeNotFoundError)

    def get_employee(self, employee_id: UUID, tenant_id: UUID) -> Employee:
        return self._get_employee(employee_id, tenant_id).to_dto()

    def list_employees(
        self,
        tenant_id: UUID,
        care_home_id: UUID | None = None,
        active_only: bool = True,
    ) -> list[Employee]:
        stmt = (
            select(EmployeeModel)
            .where(EmployeeModel.tenant_id == tenant_id)
            .order_by(EmployeeModel.employee_number)
        )
        if care_home_id is not None:
            stmt = stmt.where(EmployeeModel.care_home_id == care_home_id)
        if active_only:
            stmt = stmt.where(EmployeeModel.status != EmployeeStatus.LEFT.value)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def update_employee(
        self, employee_id: UUID, tenant_id: UUID, actor_id: UUID, **changes: Any
    ) -> Employee:
        """Update employee fields.  Re-applying the same changes is a no-op."""
        if changes.get("tax_code") is not None:
            changes["tax_code"] = parse_tax_code(changes["tax_code"]).raw
        if changes.get("ni_category") is not None:
            changes["ni_category"] = self._validate_ni_category(changes["ni_category"])
        if changes.get("phone"):
            changes["phone"] = validate_uk_phone(changes["phone"])
        if changes.get("email"):
            changes["email"] = validate_email(changes["email"])
        if changes.get("bank_sort_code"):
            changes["bank_sort_code"] = validate_sort_code(changes["bank_sort_code"])

        with transaction(self._session, "update_employee"):
            orm = self._get_employee(employee_id, tenant_id)
            changed = apply_changes(orm, changes, _UPDATABLE_EMPLOYEE_FIELDS, actor_id)
            try:
                result = orm.to_dto()
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            if changed:
                self._session.flush()
                self._audit.record(
                    "EMPLOYEE_UPDATED", "Employee", employee_id, tenant_id=tenant_id,
                    actor_id=actor_id, details={"fields": changed},
                )

        logger.info(
            "employee_updated",
            extra={"employee_id": str(employee_id), "fields": changed},
        )
        return result

    def deactivate_employee(
        self, employee_id: UUID, tenant_id: UUID, actor_id: UUID, end_date: date
    ) -> Employee:
        with transaction(self._session, "deactivate_employee"):
            orm = self._get_employee(employee_id, tenant_id)
            if end_date < orm.start_date:
                raise ValidationError("end_date cannot precede start_date", "end_date")
            orm.status = EmployeeStatus.LEFT.value
            orm.end_date = end_date
            orm.updated_by_id = actor_id
            self._session.flush()
            self._audit.record(
                "EMPLOYEE_DEACTIVATED", "Employee", employee_id, tenant_id=tenant_id,
                actor_id=actor_id, details={"end_date": end_date.isoformat()},
            )
            result = orm.to_dto()
        logger.info("employee_deactivated", extra={"employee_id": str(employee_id)})
        return result

    # -------------------------------------------------------------------------
    # Gross to net
    # -------------------------------------------------------------------------

    def calculate_gross_to_net(
        self,
        gross_pay: Decimal,
        tax_code: str = "1257L",
        ni_category: str = "A",
        frequency: PayFrequency = PayFrequency.MONTHLY,
        pension_opt_out: bool = False,
        pension_employee_rate: Decimal | None = None,
        pension_employer_rate: Decimal | None = None,
        student_loan_plan: StudentLoanPlan | None = None,
        postgraduate_loan: bool = False,
        other_deductions: Decimal = Decimal("0"),
        tax_year: str | None = None,
    ) -> DeductionBreakdown:
        """Pure gross-to-net for one period.  Nothing is persisted."""
        try:
            inputs = PayInputs(
                gross_pay=gross_pay,
                tax_code=tax_code,
                ni_category=ni_category,
                frequency=frequency,
                pension_opt_out=pension_opt_out,
                pension_employee_rate=(
                    self._config.default_employee_pension_rate
                    if pension_employee_rate is None else pension_employee_rate
                ),
                pension_employer_rate=(
                    self._config.default_employer_pension_rate
                    if pension_employer_rate is None else pension_employer_rate
                ),
                student_loan_plan=student_loan_plan,
                postgraduate_loan=postgraduate_loan,
                other_deductions=other_deductions,
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        breakdown = calculate_payslip_deductions(inputs, self._rates(tax_year=tax_year))
        logger.info(
            "gross_to_net_calculated",
            extra={
                "gross_pay": str(gross_pay),
                "tax_code": breakdown.income_tax.tax_code,
                "ni_category": breakdown.national_insurance.category,
                "income_tax": str(breakdown.income_tax.tax),
                "employee_ni": str(breakdown.national_insurance.employee_contribution),
                "net_pay": str(breakdown.net_pay),
            },
        )
        return breakdown

    # -------------------------------------------------------------------------
    # Payroll runs
    # -------------------------------------------------------------------------

    def _get_run(self, run_id: UUID, tenant_id: UUID) -> PayrollRunModel:
        return get_scoped(self._session, PayrollRunModel, run_id, tenant_id, PayrollRunNotFoundError)

    def create_payroll_run(
        self,
        tenant_id: UUID,
        period_start: date,
        period_end: date,
        pay_date: date,
        actor_id: UUID,
        care_home_id: UUID | None = None,
        pay_frequency: PayFrequency | None = None,
    ) -> PayrollRun:
        """
        Create a draft run numbered ``PAY-YYYYMM-NNN`` from the pay date.

        Raises:
            ValidationError: unless period_start <= period_end <= pay_date.
        """
        if period_start > period_end:
            raise ValidationError("period_start must not be after period_end", "period_start")
        if pay_date < period_end:
            raise ValidationError("pay_date must not precede period_end", "pay_date")
        frequency = pay_frequency or PayFrequency(self._config.default_pay_frequency)

        with transaction(self._session, "create_payroll_run"):
            run_number = next_document_number(
                self._session,
                PayrollRunModel,
                PayrollRunModel.run_number,
                tenant_id,
                f"{self._config.run_number_prefix}-{pay_date:%Y%m}",
                width=3,
            )
            orm = PayrollRunModel(
                tenant_id=tenant_id,
                care_home_id=care_home_id,
                run_number=run_number,
                period_start=period_start,
                period_end=period_end,
                pay_date=pay_date,
                pay_frequency=frequency.value,
                status=PAYROLL_RUN_WORKFLOW.initial_state,
                tax_year=self._tax_year(pay_date),
                created_by_id=actor_id,
            )
            self._session.add(orm)
            self._session.flush()
            self._audit.record(
                "PAYROLL_RUN_CREATED", "PayrollRun", orm.id, tenant_id=tenant_id,
                actor_id=actor_id, details={"run_number": run_number},
            )
            result = orm.to_dto()

        logger.info(
            "payroll_run_created",
            extra={"run_id": str(result.id), "run_number": run_number},
        )
        return result

    def _employees_in_scope(self, run: PayrollRunModel) -> list[EmployeeModel]:
        stmt = (
            select(EmployeeModel)
            .where(
                EmployeeModel.tenant_id == run.tenant_id,
                EmployeeModel.pay_frequency == run.pay_frequency,
                EmployeeModel.start_date <= run.period_end,
                (EmployeeModel.end_date.is_(None)) | (EmployeeModel.end_date >= run.period_start),
                EmployeeModel.status != EmployeeStatus.ON_LEAVE.value,
            )
            .order_by(EmployeeModel.employee_number)
        )
        if run.care_home_id is not None:
            stmt = stmt.where(EmployeeModel.care_home_id == run.care_home_id)
        return list(self._session.execute(stmt).scalars().all())

    def _previous_ytd(self, employee_id: UUID, run: PayrollRunModel) -> dict[str, Decimal]:
        row = self._session.execute(
            select(
                func.coalesce(func.sum(PayslipModel.gross_pay), 0),
                func.coalesce(func.sum(PayslipModel.income_tax), 0),
                func.coalesce(func.sum(PayslipModel.employee_ni), 0),
                func.coalesce(func.sum(PayslipModel.pension_employee), 0),
                func.coalesce(
                    func.sum(PayslipModel.student_loan + PayslipModel.postgraduate_loan), 0
                ),
                func.coalesce(func.sum(PayslipModel.net_pay), 0),
            )
            .join(PayrollRunModel, PayrollRunModel.id == PayslipModel.payroll_run_id)
            .where(
                and_(
                    PayslipModel.employee_id == employee_id,
                    PayslipModel.tax_year == run.tax_year,
                    PayrollRunModel.status == PayrollRunStatus.COMPLETED.value,
                    PayrollRunModel.id != run.id,
                )
            )
        ).one()
        keys = ("gross", "tax", "ni", "pension", "loan", "net")
        return {k: Decimal(str(v)) for k, v in zip(keys, row)}

    def _basic_and_overtime(
        self,
        employee: EmployeeModel,
        frequency: PayFrequency,
        hours: Decimal | None,
        overtime_hours: Decimal | None,
    ) -> tuple[Decimal, Decimal, Decimal | None]:
        periods = Decimal(periods_per_year(frequency))
        if employee.pay_basis == PayBasis.SALARIED.value:
            basic = _q(employee.annual_salary / periods)
            worked = hours
        else:
            worked = hours if hours is not None else _q(
                employee.contracted_hours_per_week * WEEKS_PER_PERIOD[frequency]
            )
            basic = _q(worked * employee.hourly_rate)

        overtime = Decimal("0.00")
        if overtime_hours:
            rate = employee.overtime_rate
            if not rate:
                if employee.pay_basis == PayBasis.SALARIED.value:
                    hourly = employee.annual_salary / Decimal("52") / employee.contracted_hours_per_week
                else:
                    hourly = employee.hourly_rate
                rate = hourly * self._config.overtime_multiplier
            overtime = _q(overtime_hours * rate)
        return basic, overtime, worked

    def process_payroll_run(
        self,
        run_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        hours: dict[UUID, Decimal] | None = None,
        overtime_hours: dict[UUID, Decimal] | None = None,
        adjustments: dict[UUID, Decimal] | None = None,
        other_deductions: dict[UUID, Decimal] | None = None,
    ) -> PayrollRun:
        """
        Calculate a payslip for every employee in scope and complete the run.

        The run moves draft -> processing (committed), then
        processing -> completed with every payslip in one transaction.  On
        any failure the payslip work is rolled back and the run returns to
        draft with ``failure_reason`` set; the exception is re-raised.
        """
        hours = hours or {}
        overtime_hours = overtime_hours or {}
        adjustments = adjustments or {}
        other_deductions = other_deductions or {}

        with transaction(self._session, "start_payroll_run"):
            run = self._get_run(run_id, tenant_id)
            transition = PAYROLL_RUN_WORKFLOW.transition_for(run.status, "process")
            employees = self._employees_in_scope(run)
            if not employees:
                raise BusinessRuleError(
                    f"Payroll run {run.run_number} has no active employees in scope"
                )
            run.status = transition.to_state
            run.failure_reason = None
            run.updated_by_id = actor_id

        logger.info(
            "payroll_run_processing",
            extra={"run_id": str(run_id), "employee_count": len(employees)},
        )

        try:
            with transaction(self._session, "process_payroll_run"):
                run = self._get_run(run_id, tenant_id)
                frequency = PayFrequency(run.pay_frequency)
                rates = self._rates(tax_year=run.tax_year)
                totals = {
                    "gross": Decimal("0"), "tax": Decimal("0"), "ee_ni": Decimal("0"),
                    "er_ni": Decimal("0"), "ee_pen": Decimal("0"), "er_pen": Decimal("0"),
                    "loan": Decimal("0"), "net": Decimal("0"),
                }
                run.employee_count = 0
                for employee in self._employees_in_scope(run):
                    basic, overtime, worked = self._basic_and_overtime(
                        employee, frequency, hours.get(employee.id), overtime_hours.get(employee.id)
                    )
                    adjustment = _q(adjustments.get(employee.id, Decimal("0")))
                    gross = basic + overtime + adjustment
                    if gross < 0:
                        raise ValidationError(
                            f"Gross pay for {employee.employee_number} would be negative",
                            "adjustments",
                        )
                    breakdown = calculate_payslip_deductions(
                        PayInputs(
                            gross_pay=gross,
                            tax_code=employee.tax_code,
                            ni_category=employee.ni_category,
                            frequency=frequency,
                            pension_opt_out=employee.pension_opt_out,
                            pension_employee_rate=employee.pension_employee_rate,
                            pension_employer_rate=employee.pension_employer_rate,
                            student_loan_plan=(
                                StudentLoanPlan(employee.student_loan_plan)
                                if employee.student_loan_plan else None
                            ),
                            postgraduate_loan=employee.postgraduate_loan,
                            other_deductions=other_deductions.get(employee.id, Decimal("0")),
                        ),
                        rates,
                    )
                    ytd = self._previous_ytd(employee.id, run)
                    loans = breakdown.student_loan + breakdown.postgraduate_loan
                    self._session.add(
                        PayslipModel(
                            tenant_id=run.tenant_id,
                            care_home_id=employee.care_home_id,
                            payroll_run_id=run.id,
                            employee_id=employee.id,
                            period_start=run.period_start,
                            period_end=run.period_end,
                            pay_date=run.pay_date,
                            tax_year=run.tax_year,
                            tax_code=employee.tax_code,
                            ni_category=employee.ni_category,
                            hours_worked=worked,
                            overtime_hours=overtime_hours.get(employee.id),
                            basic_pay=basic,
                            overtime_pay=overtime,
                            adjustments=adjustment,
                            gross_pay=gross,
                            income_tax=breakdown.income_tax.tax,
                            employee_ni=breakdown.national_insurance.employee_contribution,
                            employer_ni=breakdown.national_insurance.employer_contribution,
                            pension_employee=breakdown.pension.employee_contribution,
                            pension_employer=breakdown.pension.employer_contribution,
                            student_loan=breakdown.student_loan,
                            postgraduate_loan=breakdown.postgraduate_loan,
                            other_deductions=breakdown.other_deductions,
                            net_pay=breakdown.net_pay,
                            ytd_gross=ytd["gross"] + gross,
                            ytd_tax=ytd["tax"] + breakdown.income_tax.tax,
                            ytd_employee_ni=ytd["ni"] + breakdown.national_insurance.employee_contribution,
                            ytd_pension=ytd["pension"] + breakdown.pension.employee_contribution,
                            ytd_student_loan=ytd["loan"] + loans,
                            ytd_net=ytd["net"] + breakdown.net_pay,
                            created_by_id=actor_id,
                        )
                    )
                    totals["gross"] += gross
                    totals["tax"] += breakdown.income_tax.tax
                    totals["ee_ni"] += breakdown.national_insurance.employee_contribution
                    totals["er_ni"] += breakdown.national_insurance.employer_contribution
                    totals["ee_pen"] += breakdown.pension.employee_contribution
                    totals["er_pen"] += breakdown.pension.employer_contribution
                    totals["loan"] += loans
                    totals["net"] += breakdown.net_pay
                    run.employee_count += 1

                run.total_gross = totals["gross"]
                run.total_tax = totals["tax"]
                run.total_employee_ni = totals["ee_ni"]
                run.total_employer_ni = totals["er_ni"]
                run.total_pension_employee = totals["ee_pen"]
                run.total_pension_employer = totals["er_pen"]
                run.total_student_loan = totals["loan"]
                run.total_net = totals["net"]
                run.apprenticeship_levy = calculate_apprenticeship_levy(
                    totals["gross"], frequency, rates
                )
                run.status = PAYROLL_RUN_WORKFLOW.transition_for(run.status, "complete").to_state
                run.updated_by_id = actor_id
                self._session.flush()
                self._audit.record(
                    "PAYROLL_RUN_PROCESSED", "PayrollRun", run.id, tenant_id=tenant_id,
                    actor_id=actor_id,
                    details={"employee_count": run.employee_count, "total_gross": str(run.total_gross)},
                )
                result = run.to_dto()
        except Exception as exc:
            self._revert_run(run_id, tenant_id, actor_id, exc)
            raise

        logger.info(
            "payroll_run_processed",
            extra={
                "run_id": str(run_id),
                "run_number": result.run_number,
                "employee_count": result.employee_count,
                "total_gross": str(result.total_gross),
                "total_net": str(result.total_net),
                "apprenticeship_levy": str(result.apprenticeship_levy),
            },
        )
        return result

    def _revert_run(self, run_id: UUID, tenant_id: UUID, actor_id: UUID, exc: Exception) -> None:
        with transaction(self._session, "revert_payroll_run"):
            run = self._get_run(run_id, tenant_id)
            run.status = PAYROLL_RUN_WORKFLOW.transition_for(run.status, "revert").to_state
            run.failure_reason = str(exc)[:1000]
            run.employee_count = 0
            run.updated_by_id = actor_id
        logger.error(
            "payroll_run_reverted",
            extra={"run_id": str(run_id), "reason": str(exc)},
        )

    def cancel_payroll_run(self, run_id: UUID, tenant_id: UUID, actor_id: UUID) -> PayrollRun:
        with transaction(self._session, "cancel_payroll_run"):
            run = self._get_run(run_id, tenant_id)
            run.status = PAYROLL_RUN_WORKFLOW.transition_for(run.status, "cancel").to_state
            run.updated_by_id = actor_id
            self._audit.record(
                "PAYROLL_RUN_CANCELLED", "PayrollRun", run_id, tenant_id=tenant_id, actor_id=actor_id,
            )
            result = run.to_dto()
        logger.info("payroll_run_cancelled", extra={"run_id": str(run_id)})
        return result

    def get_payroll_run(self, run_id: UUID, tenant_id: UUID) -> PayrollRun:
        return self._get_run(run_id, tenant_id).to_dto()

    def list_payroll_runs(
        self, tenant_id: UUID, status: PayrollRunStatus | None = None
    ) -> list[PayrollRun]:
        stmt = (
            select(PayrollRunModel)
            .where(PayrollRunModel.tenant_id == tenant_id)
            .order_by(PayrollRunModel.pay_date.desc(), PayrollRunModel.run_number.desc())
        )
        if status is not None:
            stmt = stmt.where(PayrollRunModel.status == status.value)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def list_payslips(self, run_id: UUID, tenant_id: UUID) -> list[Payslip]:
        self._get_run(run_id, tenant_id)
        stmt = (
            select(PayslipModel)
            .where(PayslipModel.payroll_run_id == run_id)
            .order_by(PayslipModel.created_at, PayslipModel.id)
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]
