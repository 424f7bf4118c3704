"""
Configuration Loader (``care_config.loader``).

Responsibility
--------------
Loads tax-year YAML files and parses them into the frozen dataclasses in
``care_config.schema``.  Runtime callers go through
``care_config.get_active_config()``; the functions here are public so
tests can parse ad-hoc dictionaries.

Invariants enforced
-------------------
* Monetary values in YAML are strings and parsed with ``Decimal(str)`` --
  never through float.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  document for configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid date format  -> ``ValueError`` from ``date.fromisoformat``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

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


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    return data or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 over a canonical JSON dump of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _dec(value: Any) -> Decimal:
    return Decimal(str(value))


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def parse_tax_band(data: dict[str, Any]) -> TaxBand:
    upper = data.get("upper")
    return TaxBand(
        name=data["name"],
        rate=_dec(data["rate"]),
        upper=_dec(upper) if upper is not None else None,
    )


def parse_regime(name: str, data: dict[str, Any]) -> IncomeTaxRegime:
    return IncomeTaxRegime(
        name=name,
        bands=tuple(parse_tax_band(b) for b in data["bands"]),
        flat_rates={k: _dec(v) for k, v in (data.get("flat_rates") or {}).items()},
    )


def parse_ni_category(category: str, data: dict[str, Any]) -> NICategoryRates:
    return NICategoryRates(
        category=category,
        employee_main_rate=_dec(data["employee_main_rate"]),
        employee_upper_rate=_dec(data["employee_upper_rate"]),
        employer_rate=_dec(data["employer_rate"]),
        employer_threshold=data.get("employer_threshold", "secondary"),
    )


def parse_tax_year(data: dict[str, Any]) -> TaxYearRates:
    """Parse a whole tax-year document into ``TaxYearRates``."""
    income_tax = data["income_tax"]
    ni = data["national_insurance"]
    thresholds = ni["thresholds"]
    pension = data["pension"]
    levy = data["apprenticeship_levy"]

    return TaxYearRates(
        tax_year=str(data["tax_year"]),
        start_date=_parse_date(data["start_date"]),
        end_date=_parse_date(data["end_date"]),
        personal_allowance=_dec(income_tax["personal_allowance"]),
        k_code_overriding_limit=_dec(income_tax.get("k_code_overriding_limit", "0.50")),
        regimes={
            name: parse_regime(name, regime)
            for name, regime in income_tax["regimes"].items()
        },
        ni_thresholds=NIThresholds(
            primary_threshold=_dec(thresholds["primary_threshold"]),
            upper_earnings_limit=_dec(thresholds["upper_earnings_limit"]),
            secondary_threshold=_dec(thresholds["secondary_threshold"]),
            upper_secondary_threshold=_dec(thresholds["upper_secondary_threshold"]),
        ),
        ni_categories={
            str(cat): parse_ni_category(str(cat), rates)
            for cat, rates in ni["categories"].items()
        },
        pension=PensionRates(
            lower_qualifying_earnings=_dec(pension["lower_qualifying_earnings"]),
            upper_qualifying_earnings=_dec(pension["upper_qualifying_earnings"]),
            minimum_employer_rate=_dec(pension["minimum_employer_rate"]),
            default_employee_rate=_dec(pension["default_employee_rate"]),
        ),
        student_loans={
            plan: StudentLoanPlanRates(
                plan=plan,
                threshold=_dec(values["threshold"]),
                rate=_dec(values["rate"]),
            )
            for plan, values in data["student_loans"].items()
        },
        apprenticeship_levy=ApprenticeshipLevyRates(
            rate=_dec(levy["rate"]),
            allowance=_dec(levy["allowance"]),
            pay_bill_threshold=_dec(levy["pay_bill_threshold"]),
        ),
        checksum=compute_checksum(data),
    )


def tax_year_file_name(tax_year: str) -> str:
    """``"2025/26"`` -> ``"2025_26.yaml"``."""
    return tax_year.replace("/", "_") + ".yaml"


def load_tax_year(tax_year: str, config_dir: Path) -> TaxYearRates:
    return parse_tax_year(load_yaml_file(config_dir / tax_year_file_name(tax_year)))
