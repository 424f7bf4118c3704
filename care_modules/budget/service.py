"""
Budgeting Module Service (``care_modules.budget.service``).

Responsibility
--------------
Budget creation and approval, actuals capture and budget-vs-actual
variance analysis for a tenant or care home.

Architecture position
---------------------
**Modules layer** -- ``BudgetService`` is the sole public entry point for
budgeting operations and owns the transaction boundary.

Invariants enforced
-------------------
* Only draft budgets can be edited; an edit that changes anything bumps
  ``version``.  Re-applying the same edit is a no-op.
* Actuals are recorded only against active budgets.
* Variance sign: ``variance = actual - budgeted``.  Revenue is favourable
  when actual >= budgeted; expense when actual <= budgeted; profit as revenue.

Failure modes
-------------
* ``DuplicateEntityError``  -> budget_code already used in the tenant.
* ``InvalidTransitionError``  -> lifecycle action out of order.
* ``ValidationError``  -> bad dates, year format, unknown category.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.exceptions import (
    BudgetNotFoundError,
    DuplicateEntityError,
    InvalidTransitionError,
    ValidationError,
)
from care_kernel.logging_config import get_logger
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import apply_changes, get_scoped, transaction
from care_modules.budget.models import (
    Budget,
    BudgetLine,
    BudgetStatus,
    BudgetType,
    BudgetVarianceReport,
    LineType,
    LineVariance,
    VarianceFigure,
)
from care_modules.budget.orm import BudgetLineModel, BudgetModel
from care_modules.budget.workflows import BUDGET_WORKFLOW

logger = get_logger("modules.budget.service")

TWO_PLACES = Decimal("0.01")

_UPDATABLE_FIELDS = (
    "budget_name",
    "budget_type",
    "start_date",
    "end_date",
    "currency",
    "description",
    "care_home_id",
)


def _q(amount: Decimal) -> Decimal:
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def variance_figure(budgeted: Decimal, actual: Decimal, higher_is_better: bool) -> VarianceFigure:
    """Variance of actual against budget; percentage is 0 when nothing was budgeted."""
    variance = actual - budgeted
    pct = _q(variance / budgeted * 100) if budgeted != 0 else Decimal("0.00")
    favourable = actual >= budgeted if higher_is_better else actual <= budgeted
    return VarianceFigure(
        budgeted=_q(budgeted),
        actual=_q(actual),
        variance=_q(variance),
        variance_pct=pct,
        is_favourable=favourable,
    )


def _build_line(raw: BudgetLine | Mapping[str, Any]) -> BudgetLine:
    if isinstance(raw, BudgetLine):
        return raw
    try:
        return BudgetLine(
            category=str(raw["category"]).strip(),
            line_type=LineType(raw["line_type"]),
            budgeted_amount=Decimal(str(raw["budgeted_amount"])),
        )
    except (KeyError, ArithmeticError, ValueError) as exc:
        raise ValidationError(f"Invalid budget line: {exc}", "lines") from exc


def _line_key(line: BudgetLine) -> tuple[str, str, Decimal]:
    return (line.category, line.line_type.value, Decimal(line.budgeted_amount))


class BudgetService:
    """Budgets for one tenant at a time."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._audit = audit or AuditService(session, clock=self._clock)

    def _get(self, budget_id: UUID, tenant_id: UUID) -> BudgetModel:
        return get_scoped(self._session, BudgetModel, budget_id, tenant_id, BudgetNotFoundError)

    def _record(self, action: str, orm: BudgetModel, actor_id: UUID, **details: Any) -> None:
        self._audit.record(
            action, "Budget", orm.id, tenant_id=orm.tenant_id, actor_id=actor_id,
            details={"budget_code": orm.budget_code, "status": orm.status, **details},
        )

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def create_budget(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        budget_name: str,
        budget_code: str,
        budget_type: BudgetType,
        financial_year: str,
        start_date: date,
        end_date: date,
        lines: Iterable[BudgetLine | Mapping[str, Any]] = (),
        care_home_id: UUID | None = None,
        currency: str = "GBP",
        description: str | None = None,
    ) -> Budget:
        built = tuple(_build_line(raw) for raw in lines)
        self._check_line_keys(built)
        try:
            budget = Budget(
                id=uuid4(),
                tenant_id=tenant_id,
                care_home_id=care_home_id,
                budget_name=(budget_name or "").strip(),
                budget_code=(budget_code or "").strip().upper(),
                budget_type=BudgetType(budget_type),
                financial_year=financial_year,
                start_date=start_date,
                end_date=end_date,
                lines=built,
                currency=currency.upper(),
                description=description,
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if not budget.budget_name:
            raise ValidationError("budget_name is required", "budget_name")
        if not budget.budget_code:
            raise ValidationError("budget_code is required", "budget_code")

        with transaction(self._session, "create_budget"):
            clash = self._session.execute(
                select(BudgetModel.id).where(
                    BudgetModel.tenant_id == tenant_id,
                    BudgetModel.budget_code == budget.budget_code,
                )
            ).scalar_one_or_none()
            if clash is not None:
                raise DuplicateEntityError("Budget", "budget_code", budget.budget_code)
            orm = BudgetModel.from_dto(budget, created_by_id=actor_id)
            self._session.add(orm)
            self._session.flush()
            self._record("BUDGET_CREATED", orm, actor_id, lines=len(built))
            result = orm.to_dto()

        logger.info(
            "budget_created",
            extra={"budget_code": result.budget_code, "financial_year": result.financial_year},
        )
        return result

    @staticmethod
    def _check_line_keys(lines: tuple[BudgetLine, ...]) -> None:
        seen: set[tuple[str, str]] = set()
        for line in lines:
            key = (line.category, line.line_type.value)
            if key in seen:
                raise ValidationError(
                    f"Duplicate budget line {line.category} ({line.line_type.value})", "lines"
                )
            seen.add(key)

    def get_budget(self, budget_id: UUID, tenant_id: UUID) -> Budget:
        return self._get(budget_id, tenant_id).to_dto()

    def list_budgets(
        self,
        tenant_id: UUID,
        financial_year: str | None = None,
        status: BudgetStatus | None = None,
        care_home_id: UUID | None = None,
    ) -> list[Budget]:
        stmt = select(BudgetModel).where(BudgetModel.tenant_id == tenant_id)
        if financial_year is not None:
            stmt = stmt.where(BudgetModel.financial_year == financial_year)
        if status is not None:
            stmt = stmt.where(BudgetModel.status == BudgetStatus(status).value)
        if care_home_id is not None:
            stmt = stmt.where(BudgetModel.care_home_id == care_home_id)
        rows = self._session.execute(stmt.order_by(BudgetModel.budget_code)).scalars().all()
        return [r.to_dto() for r in rows]

    def update_budget(
        self, budget_id: UUID, tenant_id: UUID, actor_id: UUID, **changes: Any
    ) -> Budget:
        """Edit a draft budget.  ``lines`` replaces the full line set."""
        new_lines = changes.pop("lines", None)
        if changes.get("budget_type") is not None:
            changes["budget_type"] = BudgetType(changes["budget_type"])
        if changes.get("currency") is not None:
            changes["currency"] = changes["currency"].upper()

        with transaction(self._session, "update_budget"):
            orm = self._get(budget_id, tenant_id)
            if orm.status != BudgetStatus.DRAFT.value:
                raise InvalidTransitionError("budget", orm.status, "update")
            changed = apply_changes(orm, changes, _UPDATABLE_FIELDS, actor_id)
            if new_lines is not None:
                built = tuple(_build_line(raw) for raw in new_lines)
                self._check_line_keys(built)
                current = [_line_key(line.to_dto()) for line in orm.lines]
                if current != [_line_key(line) for line in built]:
                    orm.lines.clear()
                    self._session.flush()
                    orm.lines.extend(
                        BudgetLineModel.from_dto(line, position, actor_id)
                        for position, line in enumerate(built, start=1)
                    )
                    changed.append("lines")
            try:
                result = orm.to_dto()
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            if changed:
                orm.version += 1
                orm.updated_by_id = actor_id
                self._session.flush()
                self._record("BUDGET_UPDATED", orm, actor_id, fields=changed, version=orm.version)
                result = orm.to_dto()

        logger.info("budget_updated", extra={"budget_id": str(budget_id), "fields": changed})
        return result

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _transition(self, budget_id: UUID, tenant_id: UUID, actor_id: UUID, action: str,
                    **fields: Any) -> Budget:
        with transaction(self._session, f"{action}_budget"):
            orm = self._get(budget_id, tenant_id)
            transition = BUDGET_WORKFLOW.transition_for(orm.status, action)
            if action == "submit" and not orm.lines:
                raise ValidationError("A budget needs at least one line to be submitted", "lines")
            orm.status = transition.to_state
            for key, value in fields.items():
                setattr(orm, key, value)
            orm.updated_by_id = actor_id
            self._session.flush()
            self._record(f"BUDGET_{action.upper()}", orm, actor_id)
            result = orm.to_dto()
        logger.info("budget_status_changed",
                    extra={"budget_code": result.budget_code, "status": result.status.value})
        return result

    def submit_budget(self, budget_id: UUID, tenant_id: UUID, actor_id: UUID) -> Budget:
        return self._transition(budget_id, tenant_id, actor_id, "submit")

    def approve_budget(
        self, budget_id: UUID, tenant_id: UUID, approver_id: UUID, notes: str | None = None
    ) -> Budget:
        return self._transition(
            budget_id, tenant_id, approver_id, "approve",
            approved_by=approver_id, approved_at=self._clock.now(), approval_notes=notes,
        )

    def reject_budget(
        self, budget_id: UUID, tenant_id: UUID, actor_id: UUID, notes: str | None = None
    ) -> Budget:
        return self._transition(budget_id, tenant_id, actor_id, "reject", approval_notes=notes)

    def activate_budget(self, budget_id: UUID, tenant_id: UUID, actor_id: UUID) -> Budget:
        return self._transition(budget_id, tenant_id, actor_id, "activate")

    def close_budget(self, budget_id: UUID, tenant_id: UUID, actor_id: UUID) -> Budget:
        return self._transition(budget_id, tenant_id, actor_id, "close")

    # -------------------------------------------------------------------------
    # Actuals and variance
    # -------------------------------------------------------------------------

    def record_actual(
        self,
        budget_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        category: str,
        amount: Decimal,
        line_type: LineType | None = None,
    ) -> Budget:
        """Add ``amount`` to the actual of the matching line (negative corrects)."""
        amount = Decimal(str(amount))
        if amount == 0:
            raise ValidationError("amount cannot be zero", "amount")
        with transaction(self._session, "record_actual"):
            orm = self._get(budget_id, tenant_id)
            if orm.status != BudgetStatus.ACTIVE.value:
                raise InvalidTransitionError("budget", orm.status, "record_actual")
            matches = [
                line for line in orm.lines
                if line.category == category
                and (line_type is None or line.line_type == LineType(line_type).value)
            ]
            if len(matches) != 1:
                raise ValidationError(
                    f"Budget {orm.budget_code} has no unique line for category {category!r}",
                    "category",
                )
            line = matches[0]
            if line.actual_amount + amount < 0:
                raise ValidationError("Actual amount cannot become negative", "amount")
            line.actual_amount = line.actual_amount + amount
            line.updated_by_id = actor_id
            self._session.flush()
            self._record("BUDGET_ACTUAL_RECORDED", orm, actor_id,
                         category=category, amount=str(amount))
            result = orm.to_dto()
        logger.info("budget_actual_recorded",
                    extra={"budget_code": result.budget_code, "category": category,
                           "amount": str(amount)})
        return result

    def compute_variance(self, budget_id: UUID, tenant_id: UUID) -> BudgetVarianceReport:
        budget = self.get_budget(budget_id, tenant_id)
        totals = {
            line_type: (
                sum((l.budgeted_amount for l in budget.lines if l.line_type == line_type), Decimal("0")),
                sum((l.actual_amount for l in budget.lines if l.line_type == line_type), Decimal("0")),
            )
            for line_type in LineType
        }
        rev_budget, rev_actual = totals[LineType.REVENUE]
        exp_budget, exp_actual = totals[LineType.EXPENSE]
        report = BudgetVarianceReport(
            budget_id=budget.id,
            budget_code=budget.budget_code,
            financial_year=budget.financial_year,
            revenue=variance_figure(rev_budget, rev_actual, higher_is_better=True),
            expense=variance_figure(exp_budget, exp_actual, higher_is_better=False),
            profit=variance_figure(rev_budget - exp_budget, rev_actual - exp_actual,
                                   higher_is_better=True),
            lines=tuple(
                LineVariance(
                    category=line.category,
                    line_type=line.line_type,
                    figure=variance_figure(
                        line.budgeted_amount, line.actual_amount,
                        higher_is_better=line.line_type == LineType.REVENUE,
                    ),
                )
                for line in budget.lines
            ),
        )
        logger.info(
            "budget_variance_computed",
            extra={"budget_code": budget.budget_code, "profit_variance": str(report.profit.variance)},
        )
        return report
