"""
Payroll Module (``care_modules.payroll``).

Responsibility
--------------
UK payroll for care-home staff: employee records with professional
registrations, PAYE income tax (rUK and Scottish bands), Class 1 National
Insurance, auto-enrolment pension, student and postgraduate loans, the
apprenticeship levy, and payroll runs that produce payslips with
year-to-date figures.

Architecture position
---------------------
**Modules layer** -- frozen DTOs, pure calculation helpers, a workflow,
a config schema, ORM companions and a service facade that owns the
transaction boundary.

Failure modes
-------------
* ``InvalidTaxCodeError`` / ``ValidationError`` on malformed input.
* ``InvalidTransitionError`` for out-of-order run actions.
"""

from care_modules.payroll.config import PayrollConfig
from care_modules.payroll.helpers import (
    calculate_apprenticeship_levy,
    calculate_income_tax,
    calculate_national_insurance,
    calculate_payslip_deductions,
    calculate_pension,
    calculate_student_loan,
    parse_tax_code,
)
from care_modules.payroll.models import (
    DeductionBreakdown,
    Employee,
    PayFrequency,
    PayInputs,
    PayrollRun,
    PayrollRunStatus,
    Payslip,
    ProfessionalRegistration,
    StudentLoanPlan,
)
from care_modules.payroll.workflows import PAYROLL_RUN_WORKFLOW

__all__ = [
    "DeductionBreakdown",
    "Employee",
    "PAYROLL_RUN_WORKFLOW",
    "PayFrequency",
    "PayInputs",
    "PayrollConfig",
    "PayrollRun",
    "PayrollRunStatus",
    "Payslip",
    "ProfessionalRegistration",
    "StudentLoanPlan",
    "calculate_apprenticeship_levy",
    "calculate_income_tax",
    "calculate_national_insurance",
    "calculate_payslip_deductions",
    "calculate_pension",
    "calculate_student_loan",
    "parse_tax_code",
]
