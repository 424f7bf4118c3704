"""
Budgeting Module (``care_modules.budget``).

Operational, capital, project and departmental budgets with an approval
lifecycle, actuals capture and budget-vs-actual variance reporting.
"""

from care_modules.budget.models import (
    Budget,
    BudgetLine,
    BudgetStatus,
    BudgetType,
    BudgetVarianceReport,
    LineType,
    VarianceFigure,
)
from care_modules.budget.workflows import BUDGET_WORKFLOW

__all__ = [
    "BUDGET_WORKFLOW",
    "Budget",
    "BudgetLine",
    "BudgetStatus",
    "BudgetType",
    "BudgetVarianceReport",
    "LineType",
    "VarianceFigure",
]
