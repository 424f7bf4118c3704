"""
Payroll Configuration Schema.

Defines the structure and sensible defaults for per-tenant payroll
settings.  Statutory rates live in ``care_config``; this is the operator's
own policy (default frequency, pension scheme rates, overtime multiplier).
"""

from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Self

from care_kernel.logging_config import get_logger

logger = get_logger("modules.payroll.config")

VALID_PAY_FREQUENCIES = {"weekly", "fortnightly", "four_weekly", "monthly"}


@dataclass
class PayrollConfig:
    """
    Configuration schema for the payroll module.

    Override at instantiation with operator-specific values:

        config = PayrollConfig(
            default_pay_frequency="weekly",
            default_employer_pension_rate=Decimal("5"),
        )
    """

    default_pay_frequency: str = "monthly"
    tax_year: str | None = None  # None: derive from the pay date

    default_employee_pension_rate: Decimal = Decimal("5")
    default_employer_pension_rate: Decimal = Decimal("3")

    default_contracted_hours: Decimal = Decimal("37.5")
    overtime_multiplier: Decimal = Decimal("1.5")

    run_number_prefix: str = "PAY"
    require_registration_for_clinical_roles: bool = False

    def __post_init__(self):
        if self.default_pay_frequency not in VALID_PAY_FREQUENCIES:
            raise ValueError(
                f"default_pay_frequency must be one of {VALID_PAY_FREQUENCIES}, "
                f"got '{self.default_pay_frequency}'"
            )
        if self.default_employee_pension_rate < 0:
            raise ValueError("default_employee_pension_rate cannot be negative")
        if self.default_employer_pension_rate < 0:
            raise ValueError("default_employer_pension_rate cannot be negative")
        if self.default_contracted_hours <= 0:
            raise ValueError("default_contracted_hours must be positive")
        if self.overtime_multiplier < 1:
            raise ValueError("overtime_multiplier must be at least 1")
        if not self.run_number_prefix:
            raise ValueError("run_number_prefix cannot be empty")
        logger.debug(
            "payroll_config_initialized",
            extra={
                "default_pay_frequency": self.default_pay_frequency,
                "tax_year": self.tax_year,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            if key in (
                "default_employee_pension_rate",
                "default_employer_pension_rate",
                "default_contracted_hours",
                "overtime_multiplier",
            ):
                value = Decimal(str(value))
            kwargs[key] = value
        return cls(**kwargs)
