"""
Budgeting Domain Models (``care_modules.budget.models``).

Responsibility
--------------
Frozen dataclass value objects for care-home budgets: the budget header,
its revenue and expense lines, and the budget-vs-actual variance report.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``financial_year`` looks like ``2025/26`` with consecutive years.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

FINANCIAL_YEAR_RE = re.compile(r"^(\d{4})/(\d{2})$")


class BudgetType(Enum):
    OPERATIONAL = "operational"
    CAPITAL = "capital"
    PROJECT = "project"
    DEPARTMENTAL = "departmental"


class BudgetStatus(Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    ACTIVE = "active"
    CLOSED = "closed"


class LineType(Enum):
    REVENUE = "revenue"
    EXPENSE = "expense"


def is_valid_financial_year(value: str) -> bool:
    match = FINANCIAL_YEAR_RE.match(value or "")
    if not match:
        return False
    start, end = int(match.group(1)), int(match.group(2))
    return (start + 1) % 100 == end


@dataclass(frozen=True)
class BudgetLine:
    """One budgeted category (e.g. "Staff costs", expense)."""
    category: str
    line_type: LineType
    budgeted_amount: Decimal
    actual_amount: Decimal = Decimal("0")
    id: UUID | None = None

    def __post_init__(self):
        if not self.category or not self.category.strip():
            raise ValueError("category is required")
        if self.budgeted_amount < 0:
            raise ValueError("budgeted_amount cannot be negative")

    @property
    def variance(self) -> Decimal:
        return self.actual_amount - self.budgeted_amount


@dataclass(frozen=True)
class Budget:
    id: UUID
    tenant_id: UUID
    budget_name: str
    budget_code: str
    budget_type: BudgetType
    financial_year: str
    start_date: date
    end_date: date
    lines: tuple[BudgetLine, ...] = ()
    status: BudgetStatus = BudgetStatus.DRAFT
    currency: str = "GBP"
    version: int = 1
    care_home_id: UUID | None = None
    description: str | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    approval_notes: str | None = None

    def __post_init__(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        if not is_valid_financial_year(self.financial_year):
            raise ValueError(f"financial_year must look like 2025/26, got {self.financial_year!r}")
        if len(self.currency) != 3:
            raise ValueError("currency must be a 3-letter ISO code")

    def total(self, line_type: LineType) -> Decimal:
        return sum(
            (line.budgeted_amount for line in self.lines if line.line_type == line_type),
            Decimal("0"),
        )


@dataclass(frozen=True)
class VarianceFigure:
    """Budgeted vs actual for one measure."""
    budgeted: Decimal
    actual: Decimal
    variance: Decimal
    variance_pct: Decimal
    is_favourable: bool


@dataclass(frozen=True)
class LineVariance:
    category: str
    line_type: LineType
    figure: VarianceFigure


@dataclass(frozen=True)
class BudgetVarianceReport:
    budget_id: UUID
    budget_code: str
    financial_year: str
    revenue: VarianceFigure
    expense: VarianceFigure
    profit: VarianceFigure
    lines: tuple[LineVariance, ...]
