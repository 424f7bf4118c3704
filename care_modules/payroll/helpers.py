"""
Payroll Helpers (``care_modules.payroll.helpers``).

Responsibility
--------------
Pure calculation functions for UK payroll: PAYE tax-code parsing, banded
income tax (rUK and Scottish), employee and employer National Insurance,
auto-enrolment pension contributions, student and postgraduate loan
deductions, the apprenticeship levy, and the composed gross-to-net
breakdown.

Architecture position
---------------------
**Modules layer** -- pure helper functions.  No I/O, no session, no
clock, no database access.  Rates come in as a ``TaxYearRates`` from
``care_config``; nothing is hard-coded here.

Method
------
Every calculation annualises the period's gross pay (weekly x52,
fortnightly x26, four-weekly x13, monthly x12), applies the annual
thresholds and bands, and divides the result back to the period.
Amounts are quantized to pennies with ROUND_HALF_UP; student and
postgraduate loan deductions are rounded down to whole pounds.

Invariants enforced
-------------------
* All numeric inputs and outputs use ``Decimal`` -- NEVER ``float``.
* No deduction is ever negative.
* Net pay = gross - tax - employee NI - employee pension - loans - other.
* K-code tax never exceeds 50% of the period's gross pay.

Failure modes
-------------
* Unrecognised tax code  -> ``InvalidTaxCodeError``.
* Unknown NI category or loan plan  -> ``ValidationError``.
* Negative gross pay  -> ``ValidationError``.
"""

from __future__ import annotations

import re
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

from care_config.schema import TaxYearRates
from care_kernel.exceptions import InvalidTaxCodeError, ValidationError
from care_modules.payroll.models import (
    DeductionBreakdown,
    NICalculation,
    PayFrequency,
    PayInputs,
    PensionCalculation,
    StudentLoanPlan,
    TaxBandResult,
    TaxCalculation,
    TaxCode,
)

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")

PERIODS_PER_YEAR = {
    PayFrequency.WEEKLY: 52,
    PayFrequency.FORTNIGHTLY: 26,
    PayFrequency.FOUR_WEEKLY: 13,
    PayFrequency.MONTHLY: 12,
}

WEEKS_PER_PERIOD = {
    PayFrequency.WEEKLY: Decimal("1"),
    PayFrequency.FORTNIGHTLY: Decimal("2"),
    PayFrequency.FOUR_WEEKLY: Decimal("4"),
    PayFrequency.MONTHLY: Decimal("52") / Decimal("12"),
}

_TAX_CODE_RE = re.compile(
    r"^(?P<country>[SC])?"
    r"(?P<body>K\d+|\d+[LMNT]|BR|D0|D1|D2|NT)"
    r"(?:[\s/]*(?P<emergency>W1|M1|X))?$"
)


def _q(amount: Decimal) -> Decimal:
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _frequency(frequency: PayFrequency | str) -> PayFrequency:
    if isinstance(frequency, PayFrequency):
        return frequency
    try:
        return PayFrequency(frequency)
    except ValueError:
        raise ValidationError(f"Unknown pay frequency: {frequency!r}", "frequency") from None


def periods_per_year(frequency: PayFrequency | str) -> int:
    """Number of pay periods in a tax year for ``frequency``."""
    return PERIODS_PER_YEAR[_frequency(frequency)]


def _check_gross(gross_pay: Decimal) -> None:
    if gross_pay < 0:
        raise ValidationError("gross_pay cannot be negative", "gross_pay")


def parse_tax_code(code: str) -> TaxCode:
    """
    Parse a PAYE tax code.

    Accepts numeric codes (``1257L``), K codes (``K475``), ``BR``,
    ``D0``/``D1``/``D2``, ``NT`` and ``0T``, each optionally prefixed with
    ``S`` (Scottish rates) or ``C`` (Welsh, same bands as rUK) and
    optionally suffixed with ``W1``, ``M1`` or ``X`` (emergency basis).

    Raises:
        InvalidTaxCodeError: for anything else.
    """
    raw = (code or "").strip().upper()
    match = _TAX_CODE_RE.match(raw)
    if not match:
        raise InvalidTaxCodeError(code)

    regime = "scottish" if match.group("country") == "S" else "rUK"
    body = match.group("body")
    is_emergency = match.group("emergency") is not None

    if body == "NT":
        return TaxCode(raw=raw, allowance=ZERO, regime=regime, no_tax=True,
                       is_emergency=is_emergency)
    if body in ("BR", "D0", "D1", "D2"):
        return TaxCode(raw=raw, allowance=ZERO, regime=regime, flat_rate_key=body,
                       is_emergency=is_emergency)
    if body.startswith("K"):
        return TaxCode(raw=raw, allowance=-Decimal(body[1:]) * 10, regime=regime,
                       is_emergency=is_emergency)
    return TaxCode(raw=raw, allowance=Decimal(body[:-1]) * 10, regime=regime,
                   is_emergency=is_emergency)


def calculate_income_tax(
    gross_pay: Decimal,
    tax_code: str | TaxCode,
    frequency: PayFrequency | str,
    rates: TaxYearRates,
) -> TaxCalculation:
    """
    Income tax for one period.

    Preconditions:
        - ``gross_pay`` is a non-negative ``Decimal``.
    Postconditions:
        - ``tax`` is quantized to 0.01 and never negative.
        - For K codes ``tax`` <= 50% of ``gross_pay``.
    """
    _check_gross(gross_pay)
    parsed = tax_code if isinstance(tax_code, TaxCode) else parse_tax_code(tax_code)
    periods = Decimal(periods_per_year(frequency))

    regime = rates.regimes.get(parsed.regime)
    if regime is None:
        raise InvalidTaxCodeError(parsed.raw)

    if parsed.no_tax or gross_pay == 0:
        return TaxCalculation(
            tax_code=parsed.raw, gross_pay=gross_pay, taxable_pay=ZERO, tax=ZERO
        )

    annual_gross = gross_pay * periods
    band_results: list[TaxBandResult] = []

    if parsed.flat_rate_key is not None:
        rate = regime.flat_rates.get(parsed.flat_rate_key)
        if rate is None:
            raise InvalidTaxCodeError(parsed.raw)
        taxable_annual = annual_gross
        annual_tax = annual_gross * rate
        band_results.append(
            TaxBandResult(parsed.flat_rate_key, rate, _q(gross_pay), _q(annual_tax / periods))
        )
    else:
        taxable_annual = max(ZERO, annual_gross - parsed.allowance)
        annual_tax = ZERO
        lower = ZERO
        for band in regime.bands:
            if taxable_annual <= lower:
                break
            top = taxable_annual if band.upper is None else min(taxable_annual, band.upper)
            portion = top - lower
            band_tax = portion * band.rate
            annual_tax += band_tax
            band_results.append(
                TaxBandResult(band.name, band.rate, _q(portion / periods), _q(band_tax / periods))
            )
            if band.upper is None:
                break
            lower = band.upper

    period_tax = _q(annual_tax / periods)
    capped = False
    if parsed.is_k_code:
        limit = _q(gross_pay * rates.k_code_overriding_limit)
        if period_tax > limit:
            period_tax = limit
            capped = True

    return TaxCalculation(
        tax_code=parsed.raw,
        gross_pay=gross_pay,
        taxable_pay=_q(taxable_annual / periods),
        tax=period_tax,
        bands=tuple(band_results),
        k_code_capped=capped,
    )


def calculate_national_insurance(
    gross_pay: Decimal,
    category: str,
    frequency: PayFrequency | str,
    rates: TaxYearRates,
) -> NICalculation:
    """
    Employee and employer Class 1 National Insurance for one period.

    Employee: main rate between the primary threshold and the upper
    earnings limit, upper rate above it.  Employer: the category's rate
    above the secondary threshold (or the upper secondary threshold for
    categories H, M and Z).
    """
    _check_gross(gross_pay)
    letter = (category or "").strip().upper()
    cat = rates.ni_categories.get(letter)
    if cat is None:
        raise ValidationError(f"Unknown NI category: {category!r}", "ni_category")

    periods = Decimal(periods_per_year(frequency))
    annual = gross_pay * periods
    th = rates.ni_thresholds

    main_band = max(ZERO, min(annual, th.upper_earnings_limit) - th.primary_threshold)
    upper_band = max(ZERO, annual - th.upper_earnings_limit)
    employee_annual = main_band * cat.employee_main_rate + upper_band * cat.employee_upper_rate

    employer_threshold = (
        th.secondary_threshold
        if cat.employer_threshold == "secondary"
        else th.upper_secondary_threshold
    )
    employer_annual = max(ZERO, annual - employer_threshold) * cat.employer_rate

    return NICalculation(
        category=letter,
        employee_contribution=_q(employee_annual / periods),
        employer_contribution=_q(employer_annual / periods),
    )


def calculate_pension(
    gross_pay: Decimal,
    frequency: PayFrequency | str,
    rates: TaxYearRates,
    opt_out: bool = False,
    employee_rate_pct: Decimal | None = None,
    employer_rate_pct: Decimal | None = None,
) -> PensionCalculation:
    """
    Workplace pension contributions on qualifying earnings.

    Rates are percentages.  The employer rate is raised to the statutory
    minimum when lower.  Opted-out employees get zero on both sides.
    """
    _check_gross(gross_pay)
    if opt_out:
        return PensionCalculation(
            qualifying_earnings=ZERO,
            employee_contribution=ZERO,
            employer_contribution=ZERO,
            opted_out=True,
        )

    periods = Decimal(periods_per_year(frequency))
    annual = gross_pay * periods
    pension = rates.pension
    qualifying_annual = max(
        ZERO,
        min(annual, pension.upper_qualifying_earnings) - pension.lower_qualifying_earnings,
    )

    employee_rate = pension.default_employee_rate if employee_rate_pct is None else employee_rate_pct
    if employee_rate < 0:
        raise ValidationError("pension employee rate cannot be negative", "pension_employee_rate")
    employer_rate = max(employer_rate_pct or ZERO, pension.minimum_employer_rate)

    return PensionCalculation(
        qualifying_earnings=_q(qualifying_annual / periods),
        employee_contribution=_q(qualifying_annual * employee_rate / 100 / periods),
        employer_contribution=_q(qualifying_annual * employer_rate / 100 / periods),
    )


def calculate_student_loan(
    gross_pay: Decimal,
    plan: StudentLoanPlan | str | None,
    frequency: PayFrequency | str,
    rates: TaxYearRates,
) -> Decimal:
    """
    Student (or postgraduate) loan deduction for one period.

    Postconditions:
        - Whole pounds, rounded down, expressed to 0.01.
        - ``Decimal("0.00")`` when ``plan`` is None or pay is under threshold.
    """
    _check_gross(gross_pay)
    if plan is None:
        return ZERO.quantize(TWO_PLACES)
    key = plan.value if isinstance(plan, StudentLoanPlan) else str(plan)
    plan_rates = rates.student_loans.get(key)
    if plan_rates is None:
        raise ValidationError(f"Unknown student loan plan: {plan!r}", "student_loan_plan")

    periods = Decimal(periods_per_year(frequency))
    excess = max(ZERO, gross_pay * periods - plan_rates.threshold)
    per_period = excess * plan_rates.rate / periods
    return per_period.to_integral_value(rounding=ROUND_FLOOR).quantize(TWO_PLACES)


def calculate_apprenticeship_levy(
    period_pay_bill: Decimal,
    frequency: PayFrequency | str,
    rates: TaxYearRates,
) -> Decimal:
    """
    Apprenticeship levy on a period's total pay bill.

    0.5% of the annualised pay bill less the annual allowance, returned
    per period.  Zero when the annual bill does not exceed the threshold.
    """
    if period_pay_bill < 0:
        raise ValidationError("pay bill cannot be negative", "pay_bill")
    levy = rates.apprenticeship_levy
    periods = Decimal(periods_per_year(frequency))
    annual = period_pay_bill * periods
    if annual <= levy.pay_bill_threshold:
        return ZERO.quantize(TWO_PLACES)
    return _q(max(ZERO, annual * levy.rate - levy.allowance) / periods)


def calculate_payslip_deductions(inputs: PayInputs, rates: TaxYearRates) -> DeductionBreakdown:
    """
    Full gross-to-net for one employee and one period.

    Postconditions:
        - ``net_pay == gross_pay - total_employee_deductions``.
    """
    tax = calculate_income_tax(inputs.gross_pay, inputs.tax_code, inputs.frequency, rates)
    ni = calculate_national_insurance(inputs.gross_pay, inputs.ni_category, inputs.frequency, rates)
    pension = calculate_pension(
        inputs.gross_pay,
        inputs.frequency,
        rates,
        opt_out=inputs.pension_opt_out,
        employee_rate_pct=inputs.pension_employee_rate,
        employer_rate_pct=inputs.pension_employer_rate,
    )
    student_loan = calculate_student_loan(
        inputs.gross_pay, inputs.student_loan_plan, inputs.frequency, rates
    )
    postgrad = (
        calculate_student_loan(inputs.gross_pay, StudentLoanPlan.POSTGRAD, inputs.frequency, rates)
        if inputs.postgraduate_loan
        else ZERO.quantize(TWO_PLACES)
    )
    other = _q(inputs.other_deductions)

    net = (
        inputs.gross_pay
        - tax.tax
        - ni.employee_contribution
        - pension.employee_contribution
        - student_loan
        - postgrad
        - other
    )
    return DeductionBreakdown(
        gross_pay=inputs.gross_pay,
        income_tax=tax,
        national_insurance=ni,
        pension=pension,
        student_loan=student_loan,
        postgraduate_loan=postgrad,
        other_deductions=other,
        net_pay=net,
    )
