"""
Configuration schema (``care_config.schema``).

Responsibility
--------------
Frozen dataclasses describing one HMRC tax year: income-tax regimes and
bands, National Insurance thresholds and category rates, auto-enrolment
pension qualifying earnings, student-loan plans and the apprenticeship
levy.  Instances are produced by ``care_config.loader`` and consumed by
the pure payroll helpers.

Invariants enforced
-------------------
* Every rate and threshold is ``Decimal``.
* Band upper limits are strictly increasing; only the last band is open.
* Rates lie in [0, 1].
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class TaxBand:
    """A marginal income-tax band over taxable income (after allowance).

    ``upper`` is the cumulative taxable-income limit; ``None`` for the
    open-ended top band.
    """
    name: str
    rate: Decimal
    upper: Decimal | None

    def __post_init__(self):
        if not (Decimal("0") <= self.rate <= Decimal("1")):
            raise ValueError(f"Tax band {self.name}: rate {self.rate} out of range")


@dataclass(frozen=True)
class IncomeTaxRegime:
    """Banded rates for one jurisdiction (rUK or Scottish)."""
    name: str
    bands: tuple[TaxBand, ...]
    flat_rates: dict[str, Decimal] = field(default_factory=dict)

    def __post_init__(self):
        if not self.bands:
            raise ValueError(f"Regime {self.name} has no bands")
        previous = Decimal("0")
        for i, band in enumerate(self.bands):
            is_last = i == len(self.bands) - 1
            if band.upper is None and not is_last:
                raise ValueError(f"Regime {self.name}: only the last band may be open")
            if band.upper is not None:
                if band.upper <= previous:
                    raise ValueError(f"Regime {self.name}: band limits must increase")
                previous = band.upper


@dataclass(frozen=True)
class NIThresholds:
    """Annual National Insurance thresholds."""
    primary_threshold: Decimal
    upper_earnings_limit: Decimal
    secondary_threshold: Decimal
    upper_secondary_threshold: Decimal


@dataclass(frozen=True)
class NICategoryRates:
    """Employee and employer rates for one NI category letter.

    ``employer_threshold`` names the threshold above which employer NI is
    due: ``secondary`` (ST) or ``upper_secondary`` (UST, under-21s and
    apprentices under 25).
    """
    category: str
    employee_main_rate: Decimal
    employee_upper_rate: Decimal
    employer_rate: Decimal
    employer_threshold: str = "secondary"

    def __post_init__(self):
        if self.employer_threshold not in ("secondary", "upper_secondary"):
            raise ValueError(
                f"NI category {self.category}: unknown employer threshold "
                f"{self.employer_threshold!r}"
            )


@dataclass(frozen=True)
class PensionRates:
    """Auto-enrolment qualifying earnings band and minimum rates (percent)."""
    lower_qualifying_earnings: Decimal
    upper_qualifying_earnings: Decimal
    minimum_employer_rate: Decimal
    default_employee_rate: Decimal


@dataclass(frozen=True)
class StudentLoanPlanRates:
    plan: str
    threshold: Decimal
    rate: Decimal


@dataclass(frozen=True)
class ApprenticeshipLevyRates:
    rate: Decimal
    allowance: Decimal
    pay_bill_threshold: Decimal


@dataclass(frozen=True)
class TaxYearRates:
    """All statutory payroll parameters for one UK tax year."""
    tax_year: str
    start_date: date
    end_date: date
    personal_allowance: Decimal
    k_code_overriding_limit: Decimal
    regimes: dict[str, IncomeTaxRegime]
    ni_thresholds: NIThresholds
    ni_categories: dict[str, NICategoryRates]
    pension: PensionRates
    student_loans: dict[str, StudentLoanPlanRates]
    apprenticeship_levy: ApprenticeshipLevyRates
    checksum: str = ""

    def __post_init__(self):
        if self.start_date >= self.end_date:
            raise ValueError(f"Tax year {self.tax_year}: start must precede end")
        if "rUK" not in self.regimes:
            raise ValueError(f"Tax year {self.tax_year}: rUK regime is required")

    def covers(self, as_of: date) -> bool:
        return self.start_date <= as_of <= self.end_date
