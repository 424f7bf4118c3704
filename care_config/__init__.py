"""
care_config -- single public entrypoint for statutory payroll configuration.

Responsibility:
    Provides the tax-year rate tables (income tax, National Insurance,
    pension, student loans, apprenticeship levy) through
    ``get_active_config()``.  Payroll code never hard-codes a threshold;
    it receives a ``TaxYearRates`` instance.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set for the requested
      tax year.

Audit relevance:
    Every load emits a ``care_config_loaded`` log entry with the tax year
    and checksum, tying payslips to the exact rate table that produced them.
"""

from __future__ import annotations

from datetime import date
from functools import lru_cache
from pathlib import Path

from care_config.loader import compute_checksum, load_tax_year, load_yaml_file, parse_tax_year
from care_config.schema import (
    ApprenticeshipLevyRates,
    IncomeTaxRegime,
    NICategoryRates,
    NIThresholds,
    PensionRates,
    StudentLoanPlanRates,
    TaxBand,
    TaxYearRates,
)
from care_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

DEFAULT_TAX_YEAR = "2025/26"


def tax_year_for(as_of: date) -> str:
    """UK tax years start on 6 April: 2025-04-05 -> "2024/25"."""
    start_year = as_of.year if (as_of.month, as_of.day) >= (4, 6) else as_of.year - 1
    return f"{start_year}/{str(start_year + 1)[-2:]}"


@lru_cache(maxsize=16)
def _load_cached(tax_year: str, config_dir: Path) -> TaxYearRates:
    rates = load_tax_year(tax_year, config_dir)
    logger.info(
        "care_config_loaded",
        extra={"tax_year": rates.tax_year, "checksum": rates.checksum},
    )
    return rates


def get_active_config(
    as_of_date: date | None = None,
    tax_year: str | None = None,
    config_dir: Path | None = None,
) -> TaxYearRates:
    """Return the rate table for a tax year.

    ``tax_year`` wins over ``as_of_date``; with neither, the default tax
    year is used.
    """
    if tax_year is None:
        tax_year = tax_year_for(as_of_date) if as_of_date is not None else DEFAULT_TAX_YEAR
    return _load_cached(tax_year, config_dir or _DEFAULT_CONFIG_DIR)


def available_tax_years(config_dir: Path | None = None) -> list[str]:
    directory = config_dir or _DEFAULT_CONFIG_DIR
    return sorted(p.stem.replace("_", "/") for p in directory.glob("*.yaml"))


__all__ = [
    "ApprenticeshipLevyRates",
    "DEFAULT_TAX_YEAR",
    "IncomeTaxRegime",
    "NICategoryRates",
    "NIThresholds",
    "PensionRates",
    "StudentLoanPlanRates",
    "TaxBand",
    "TaxYearRates",
    "available_tax_years",
    "compute_checksum",
    "get_active_config",
    "load_yaml_file",
    "parse_tax_year",
    "tax_year_for",
]
