"""
Tests for BudgetService.

Validates:
- Creation rules (code normalisation and uniqueness, financial year, lines)
- Draft-only editing with version bumps on real changes
- Approval workflow: submit, reject, approve, activate, close
- Recording actuals and the variance report (favourable vs adverse)
"""

from datetime import date
from decimal import Decimal

import pytest

from care_kernel.exceptions import DuplicateEntityError, InvalidTransitionError, ValidationError
from care_modules.budget.models import BudgetStatus, BudgetType, LineType
from care_modules.budget.service import BudgetService, variance_figure

LINES = [
    {"category": "Resident fees", "line_type": "revenue", "budgeted_amount": "1200000"},
    {"category": "Staff costs", "line_type": "expense", "budgeted_amount": "700000"},
    {"category": "Food", "line_type": "expense", "budgeted_amount": "100000"},
]


@pytest.fixture
def budget_service(session, deterministic_clock):
    return BudgetService(session, clock=deterministic_clock)


@pytest.fixture
def draft_budget(budget_service, tenant_id, test_actor_id, care_home_id):
    return budget_service.create_budget(
        tenant_id, test_actor_id, "Meadow View operating budget", "mv-ops-26",
        BudgetType.OPERATIONAL, "2025/26", date(2025, 4, 1), date(2026, 3, 31),
        lines=LINES, care_home_id=care_home_id,
    )


@pytest.fixture
def active_budget(budget_service, tenant_id, test_actor_id, draft_budget):
    budget_service.submit_budget(draft_budget.id, tenant_id, test_actor_id)
    budget_service.approve_budget(draft_budget.id, tenant_id, test_actor_id, "Board approved")
    return budget_service.activate_budget(draft_budget.id, tenant_id, test_actor_id)


class TestVarianceFigure:
    def test_revenue_above_budget_is_favourable(self):
        figure = variance_figure(Decimal("100"), Decimal("110"), higher_is_better=True)
        assert figure.variance == Decimal("10.00")
        assert figure.variance_pct == Decimal("10.00")
        assert figure.is_favourable

    def test_expense_above_budget_is_adverse(self):
        assert not variance_figure(Decimal("100"), Decimal("110"), higher_is_better=False).is_favourable

    def test_nothing_budgeted(self):
        assert variance_figure(Decimal("0"), Decimal("50"), higher_is_better=True).variance_pct == 0


class TestCreate:
    def test_code_uppercased(self, draft_budget):
        assert draft_budget.budget_code == "MV-OPS-26"
        assert draft_budget.status is BudgetStatus.DRAFT
        assert draft_budget.version == 1
        assert draft_budget.total(LineType.EXPENSE) == Decimal("800000")

    def test_duplicate_code(self, budget_service, tenant_id, test_actor_id, draft_budget):
        with pytest.raises(DuplicateEntityError):
            budget_service.create_budget(
                tenant_id, test_actor_id, "Copy", "MV-OPS-26", BudgetType.OPERATIONAL,
                "2025/26", date(2025, 4, 1), date(2026, 3, 31),
            )

    @pytest.mark.parametrize("year", ["2025/27", "2025", "25/26"])
    def test_financial_year_format(self, budget_service, tenant_id, test_actor_id, year):
        with pytest.raises(ValidationError):
            budget_service.create_budget(
                tenant_id, test_actor_id, "Bad", "BAD", BudgetType.CAPITAL, year,
                date(2025, 4, 1), date(2026, 3, 31),
            )

    def test_duplicate_lines_rejected(self, budget_service, tenant_id, test_actor_id):
        with pytest.raises(ValidationError):
            budget_service.create_budget(
                tenant_id, test_actor_id, "Dup", "DUP", BudgetType.OPERATIONAL, "2025/26",
                date(2025, 4, 1), date(2026, 3, 31), lines=LINES + LINES[:1],
            )

    def test_negative_line_rejected(self, budget_service, tenant_id, test_actor_id):
        with pytest.raises(ValidationError):
            budget_service.create_budget(
                tenant_id, test_actor_id, "Neg", "NEG", BudgetType.OPERATIONAL, "2025/26",
                date(2025, 4, 1), date(2026, 3, 31),
                lines=[{"category": "Food", "line_type": "expense", "budgeted_amount": "-1"}],
            )


class TestUpdate:
    def test_version_bumps_only_on_change(self, budget_service, tenant_id, test_actor_id, draft_budget):
        first = budget_service.update_budget(draft_budget.id, tenant_id, test_actor_id, description="v2")
        again = budget_service.update_budget(draft_budget.id, tenant_id, test_actor_id, description="v2")
        assert first.version == 2
        assert again.version == 2

    def test_same_lines_are_not_a_change(self, budget_service, tenant_id, test_actor_id, draft_budget):
        updated = budget_service.update_budget(draft_budget.id, tenant_id, test_actor_id, lines=LINES)
        assert updated.version == 1

    def test_replace_lines(self, budget_service, tenant_id, test_actor_id, draft_budget):
        updated = budget_service.update_budget(draft_budget.id, tenant_id, test_actor_id, lines=LINES[:2])
        assert [line.category for line in updated.lines] == ["Resident fees", "Staff costs"]
        assert updated.version == 2

    def test_submitted_budget_is_locked(self, budget_service, tenant_id, test_actor_id, draft_budget):
        budget_service.submit_budget(draft_budget.id, tenant_id, test_actor_id)
        with pytest.raises(InvalidTransitionError):
            budget_service.update_budget(draft_budget.id, tenant_id, test_actor_id, description="late")


class TestWorkflow:
    def test_submit_needs_lines(self, budget_service, tenant_id, test_actor_id):
        empty = budget_service.create_budget(
            tenant_id, test_actor_id, "Empty", "EMPTY", BudgetType.PROJECT, "2025/26",
            date(2025, 4, 1), date(2026, 3, 31),
        )
        with pytest.raises(ValidationError):
            budget_service.submit_budget(empty.id, tenant_id, test_actor_id)

    def test_reject_returns_to_draft(self, budget_service, tenant_id, test_actor_id, draft_budget):
        budget_service.submit_budget(draft_budget.id, tenant_id, test_actor_id)
        rejected = budget_service.reject_budget(draft_budget.id, tenant_id, test_actor_id, "Too lean")
        assert rejected.status is BudgetStatus.DRAFT
        assert rejected.approval_notes == "Too lean"

    def test_approval_records_approver(self, active_budget, test_actor_id):
        assert active_budget.status is BudgetStatus.ACTIVE
        assert active_budget.approved_by == test_actor_id
        assert active_budget.approved_at is not None

    def test_cannot_approve_draft(self, budget_service, tenant_id, test_actor_id, draft_budget):
        with pytest.raises(InvalidTransitionError):
            budget_service.approve_budget(draft_budget.id, tenant_id, test_actor_id)

    def test_close(self, budget_service, tenant_id, test_actor_id, active_budget):
        closed = budget_service.close_budget(active_budget.id, tenant_id, test_actor_id)
        assert closed.status is BudgetStatus.CLOSED
        assert budget_service.list_budgets(tenant_id, status=BudgetStatus.CLOSED)[0].id == closed.id


class TestActualsAndVariance:
    def test_actuals_only_on_active_budget(self, budget_service, tenant_id, test_actor_id, draft_budget):
        with pytest.raises(InvalidTransitionError):
            budget_service.record_actual(draft_budget.id, tenant_id, test_actor_id, "Food", Decimal("10"))

    def test_unknown_category(self, budget_service, tenant_id, test_actor_id, active_budget):
        with pytest.raises(ValidationError):
            budget_service.record_actual(active_budget.id, tenant_id, test_actor_id, "Laundry", Decimal("10"))

    def test_actual_cannot_go_negative(self, budget_service, tenant_id, test_actor_id, active_budget):
        with pytest.raises(ValidationError):
            budget_service.record_actual(active_budget.id, tenant_id, test_actor_id, "Food", Decimal("-1"))

    def test_variance_report(self, budget_service, tenant_id, test_actor_id, active_budget):
        for category, amount in (
            ("Resident fees", "1260000"),
            ("Staff costs", "700000"),
            ("Staff costs", "35000"),
            ("Food", "90000"),
        ):
            budget_service.record_actual(active_budget.id, tenant_id, test_actor_id, category, Decimal(amount))

        report = budget_service.compute_variance(active_budget.id, tenant_id)

        assert report.revenue.variance == Decimal("60000.00")
        assert report.revenue.variance_pct == Decimal("5.00")
        assert report.revenue.is_favourable
        assert report.expense.variance == Decimal("25000.00")
        assert not report.expense.is_favourable
        assert report.profit.budgeted == Decimal("400000.00")
        assert report.profit.variance == Decimal("35000.00")
        assert report.profit.variance_pct == Decimal("8.75")

        by_category = {line.category: line.figure for line in report.lines}
        assert not by_category["Staff costs"].is_favourable
        assert by_category["Food"].is_favourable
