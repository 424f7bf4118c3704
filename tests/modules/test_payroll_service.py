"""
Tests for PayrollService.

Validates:
- Employee lifecycle: create (with registrations), uniqueness, update, leave
- Stateless gross-to-net through the service
- Payroll runs: numbering, processing, totals, year-to-date, revert on
  failure, cancellation and the run state machine
"""

from datetime import date
from decimal import Decimal

import pytest

from care_kernel.exceptions import (
    BusinessRuleError,
    DuplicateEntityError,
    InvalidTaxCodeError,
    InvalidTransitionError,
    TenantIsolationError,
    ValidationError,
)
from care_kernel.services.audit_service import AuditService
from care_modules.payroll.models import (
    EmployeeStatus,
    PayBasis,
    PayFrequency,
    PayrollRunStatus,
    ProfessionalRegistration,
    StudentLoanPlan,
)
from care_modules.payroll.service import PayrollService


@pytest.fixture
def payroll_service(session, deterministic_clock):
    return PayrollService(session, clock=deterministic_clock)


@pytest.fixture
def make_employee(payroll_service, tenant_id, test_actor_id):
    def _make(**overrides):
        values = dict(
            employee_number="E001",
            first_name="Priya",
            last_name="Shah",
            ni_number="AB123456C",
            start_date=date(2024, 9, 2),
            annual_salary=Decimal("36000"),
        )
        values.update(overrides)
        return payroll_service.create_employee(tenant_id, test_actor_id, **values)

    return _make


def _june_run(payroll_service, tenant_id, actor_id, **kwargs):
    return payroll_service.create_payroll_run(
        tenant_id, date(2025, 6, 1), date(2025, 6, 30), date(2025, 6, 30), actor_id, **kwargs
    )


class TestEmployees:
    def test_create_with_defaults(self, make_employee):
        employee = make_employee(ni_number="ab 12 34 56 c")
        assert employee.ni_number == "AB123456C"
        assert employee.tax_code == "1257L"
        assert employee.pay_frequency is PayFrequency.MONTHLY
        assert employee.pension_employee_rate == Decimal("5")
        assert employee.status is EmployeeStatus.ACTIVE

    def test_registrations_saved_with_employee(self, make_employee):
        employee = make_employee(
            registrations=[ProfessionalRegistration("NMC", "12A3456E", date(2026, 3, 31))]
        )
        assert [r.body for r in employee.registrations] == ["NMC"]

    def test_duplicate_employee_number(self, make_employee):
        make_employee()
        with pytest.raises(DuplicateEntityError) as exc:
            make_employee(ni_number="CE654321A")
        assert exc.value.field == "employee_number"

    def test_duplicate_ni_number(self, make_employee):
        make_employee()
        with pytest.raises(DuplicateEntityError) as exc:
            make_employee(employee_number="E002")
        assert exc.value.field == "ni_number"

    def test_salaried_needs_salary(self, make_employee):
        with pytest.raises(ValidationError):
            make_employee(annual_salary=None)

    def test_hourly_needs_rate(self, make_employee):
        with pytest.raises(ValidationError):
            make_employee(pay_basis=PayBasis.HOURLY, annual_salary=None)

    def test_invalid_tax_code(self, make_employee):
        with pytest.raises(InvalidTaxCodeError):
            make_employee(tax_code="1257Q")

    def test_bank_account_must_be_eight_digits(self, make_employee):
        with pytest.raises(ValidationError):
            make_employee(bank_account_number="1234")

    def test_update_is_idempotent(self, make_employee, payroll_service, tenant_id, test_actor_id, session):
        employee = make_employee()
        payroll_service.update_employee(employee.id, tenant_id, test_actor_id, tax_code="s1257l")
        updated = payroll_service.update_employee(employee.id, tenant_id, test_actor_id, tax_code="S1257L")
        assert updated.tax_code == "S1257L"
        events = AuditService(session).list_events(tenant_id, entity_type="Employee")
        assert [e.action for e in events].count("EMPLOYEE_UPDATED") == 1

    def test_explicit_none_clears_optional_fields(self, make_employee, payroll_service, tenant_id,
                                                  test_actor_id):
        employee = make_employee(student_loan_plan=StudentLoanPlan.PLAN_2, job_title="Senior Carer")
        cleared = payroll_service.update_employee(
            employee.id, tenant_id, test_actor_id, student_loan_plan=None, job_title=None
        )
        assert cleared.student_loan_plan is None
        assert cleared.job_title is None
        assert payroll_service.get_employee(employee.id, tenant_id).student_loan_plan is None

    def test_omitted_fields_untouched(self, make_employee, payroll_service, tenant_id, test_actor_id):
        employee = make_employee(student_loan_plan=StudentLoanPlan.PLAN_2)
        updated = payroll_service.update_employee(employee.id, tenant_id, test_actor_id, job_title="Nurse")
        assert updated.student_loan_plan is StudentLoanPlan.PLAN_2

    def test_required_field_cannot_be_cleared(self, make_employee, payroll_service, tenant_id,
                                              test_actor_id):
        employee = make_employee()
        with pytest.raises(ValidationError) as exc:
            payroll_service.update_employee(employee.id, tenant_id, test_actor_id, last_name=None)
        assert exc.value.field == "last_name"
        assert payroll_service.get_employee(employee.id, tenant_id).last_name == "Shah"

    @pytest.mark.parametrize("hours", [Decimal("0"), Decimal("-5")])
    def test_salaried_needs_contracted_hours(self, make_employee, payroll_service, tenant_id,
                                             test_actor_id, hours):
        employee = make_employee()
        with pytest.raises(ValidationError):
            payroll_service.update_employee(employee.id, tenant_id, test_actor_id,
                                            contracted_hours_per_week=hours)
        assert payroll_service.get_employee(employee.id, tenant_id).contracted_hours_per_week == Decimal("37.5")

    def test_zero_hours_contract_for_hourly_staff(self, make_employee):
        employee = make_employee(pay_basis=PayBasis.HOURLY, annual_salary=None,
                                 hourly_rate=Decimal("12.50"), contracted_hours_per_week=Decimal("0"))
        assert employee.contracted_hours_per_week == Decimal("0")

    def test_unknown_field_rejected(self, make_employee, payroll_service, tenant_id, test_actor_id):
        employee = make_employee()
        with pytest.raises(ValidationError):
            payroll_service.update_employee(employee.id, tenant_id, test_actor_id, ni_number="CE654321A")

    def test_deactivate_hides_from_active_list(self, make_employee, payroll_service, tenant_id, test_actor_id):
        employee = make_employee()
        left = payroll_service.deactivate_employee(employee.id, tenant_id, test_actor_id, date(2025, 5, 31))
        assert left.status is EmployeeStatus.LEFT
        assert payroll_service.list_employees(tenant_id) == []
        assert len(payroll_service.list_employees(tenant_id, active_only=False)) == 1

    def test_other_tenant_cannot_read(self, make_employee, payroll_service, other_tenant_id):
        employee = make_employee()
        with pytest.raises(TenantIsolationError):
            payroll_service.get_employee(employee.id, other_tenant_id)


class TestGrossToNet:
    def test_reference_figures(self, payroll_service):
        result = payroll_service.calculate_gross_to_net(Decimal("3000"))
        assert result.income_tax.tax == Decimal("390.50")
        assert result.national_insurance.employee_contribution == Decimal("156.20")
        assert result.net_pay == Decimal("2329.30")

    def test_logs_calculation(self, payroll_service, captured_logs):
        payroll_service.calculate_gross_to_net(Decimal("3000"), student_loan_plan=StudentLoanPlan.PLAN_2)
        entry = next(r for r in captured_logs() if r["message"] == "gross_to_net_calculated")
        assert entry["net_pay"] == "2273.30"

    def test_negative_other_deductions(self, payroll_service):
        with pytest.raises(ValidationError):
            payroll_service.calculate_gross_to_net(Decimal("3000"), other_deductions=Decimal("-5"))


class TestPayrollRuns:
    def test_run_numbers_follow_pay_month(self, payroll_service, tenant_id, test_actor_id):
        first = _june_run(payroll_service, tenant_id, test_actor_id)
        second = _june_run(payroll_service, tenant_id, test_actor_id)
        assert first.run_number == "PAY-202506-001"
        assert second.run_number == "PAY-202506-002"
        assert first.status is PayrollRunStatus.DRAFT
        assert first.tax_year == "2025/26"

    def test_pay_date_before_period_end_rejected(self, payroll_service, tenant_id, test_actor_id):
        with pytest.raises(ValidationError):
            payroll_service.create_payroll_run(
                tenant_id, date(2025, 6, 1), date(2025, 6, 30), date(2025, 6, 29), test_actor_id
            )

    def test_process_salaried_and_hourly(self, payroll_service, make_employee, tenant_id, test_actor_id):
        salaried = make_employee()
        hourly = make_employee(
            employee_number="E002", ni_number="CE654321A", pay_basis=PayBasis.HOURLY,
            annual_salary=None, hourly_rate=Decimal("12.00"),
        )
        run = _june_run(payroll_service, tenant_id, test_actor_id)

        done = payroll_service.process_payroll_run(
            run.id, tenant_id, test_actor_id,
            hours={hourly.id: Decimal("160")},
            overtime_hours={hourly.id: Decimal("10")},
        )

        assert done.status is PayrollRunStatus.COMPLETED
        assert done.employee_count == 2
        assert done.total_gross == Decimal("5100.00")
        assert done.apprenticeship_levy == 0

        slips = {s.employee_id: s for s in payroll_service.list_payslips(run.id, tenant_id)}
        assert slips[salaried.id].net_pay == Decimal("2329.30")
        assert slips[hourly.id].basic_pay == Decimal("1920.00")
        assert slips[hourly.id].overtime_pay == Decimal("180.00")
        assert done.total_net == sum(s.net_pay for s in slips.values())

    def test_salaried_overtime_at_hourly_equivalent(self, payroll_service, make_employee, tenant_id,
                                                    test_actor_id):
        salaried = make_employee()
        run = _june_run(payroll_service, tenant_id, test_actor_id)
        payroll_service.process_payroll_run(run.id, tenant_id, test_actor_id,
                                            overtime_hours={salaried.id: Decimal("10")})
        slip = payroll_service.list_payslips(run.id, tenant_id)[0]
        # 36000 / 52 / 37.5 * 1.5 per hour
        assert slip.overtime_pay == Decimal("276.92")

    def test_hourly_defaults_to_contracted_hours(self, payroll_service, make_employee, tenant_id, test_actor_id):
        hourly = make_employee(pay_basis=PayBasis.HOURLY, annual_salary=None, hourly_rate=Decimal("12.00"))
        run = _june_run(payroll_service, tenant_id, test_actor_id)
        payroll_service.process_payroll_run(run.id, tenant_id, test_actor_id)
        slip = payroll_service.list_payslips(run.id, tenant_id)[0]
        assert slip.employee_id == hourly.id
        assert slip.basic_pay == Decimal("1950.00")

    def test_year_to_date_accumulates(self, payroll_service, make_employee, tenant_id, test_actor_id):
        make_employee()
        june = _june_run(payroll_service, tenant_id, test_actor_id)
        payroll_service.process_payroll_run(june.id, tenant_id, test_actor_id)
        july = payroll_service.create_payroll_run(
            tenant_id, date(2025, 7, 1), date(2025, 7, 31), date(2025, 7, 31), test_actor_id
        )
        payroll_service.process_payroll_run(july.id, tenant_id, test_actor_id)

        slip = payroll_service.list_payslips(july.id, tenant_id)[0]
        assert slip.ytd.gross_pay == Decimal("6000.00")
        assert slip.ytd.tax == Decimal("781.00")
        assert slip.ytd.net_pay == Decimal("4658.60")

    def test_leavers_before_period_excluded(self, payroll_service, make_employee, tenant_id, test_actor_id):
        employee = make_employee()
        make_employee(employee_number="E002", ni_number="CE654321A")
        payroll_service.deactivate_employee(employee.id, tenant_id, test_actor_id, date(2025, 4, 30))
        run = _june_run(payroll_service, tenant_id, test_actor_id)
        assert payroll_service.process_payroll_run(run.id, tenant_id, test_actor_id).employee_count == 1

    def test_no_employees_in_scope(self, payroll_service, tenant_id, test_actor_id):
        run = _june_run(payroll_service, tenant_id, test_actor_id)
        with pytest.raises(BusinessRuleError):
            payroll_service.process_payroll_run(run.id, tenant_id, test_actor_id)
        assert payroll_service.get_payroll_run(run.id, tenant_id).status is PayrollRunStatus.DRAFT

    def test_failure_reverts_to_draft(self, payroll_service, make_employee, tenant_id, test_actor_id):
        employee = make_employee()
        run = _june_run(payroll_service, tenant_id, test_actor_id)
        with pytest.raises(ValidationError):
            payroll_service.process_payroll_run(
                run.id, tenant_id, test_actor_id, adjustments={employee.id: Decimal("-5000")}
            )
        reverted = payroll_service.get_payroll_run(run.id, tenant_id)
        assert reverted.status is PayrollRunStatus.DRAFT
        assert "negative" in reverted.failure_reason
        assert payroll_service.list_payslips(run.id, tenant_id) == []

    def test_completed_run_cannot_be_processed_again(self, payroll_service, make_employee, tenant_id, test_actor_id):
        make_employee()
        run = _june_run(payroll_service, tenant_id, test_actor_id)
        payroll_service.process_payroll_run(run.id, tenant_id, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            payroll_service.process_payroll_run(run.id, tenant_id, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            payroll_service.cancel_payroll_run(run.id, tenant_id, test_actor_id)

    def test_cancel_draft(self, payroll_service, tenant_id, test_actor_id):
        run = _june_run(payroll_service, tenant_id, test_actor_id)
        cancelled = payroll_service.cancel_payroll_run(run.id, tenant_id, test_actor_id)
        assert cancelled.status is PayrollRunStatus.CANCELLED
        assert payroll_service.list_payroll_runs(tenant_id, PayrollRunStatus.DRAFT) == []

    def test_processing_is_audited(self, payroll_service, make_employee, tenant_id, test_actor_id, session):
        make_employee()
        run = _june_run(payroll_service, tenant_id, test_actor_id)
        payroll_service.process_payroll_run(run.id, tenant_id, test_actor_id)
        actions = {e.action for e in AuditService(session).list_events(tenant_id, entity_type="PayrollRun")}
        assert {"PAYROLL_RUN_CREATED", "PAYROLL_RUN_PROCESSED"} <= actions
