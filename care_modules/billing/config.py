"""
Billing Configuration Schema.

Operator policy for resident billing: payment terms and bill numbering.
"""

from dataclasses import dataclass, fields
from typing import Any, Self

from care_kernel.logging_config import get_logger

logger = get_logger("modules.billing.config")


@dataclass
class BillingConfig:
    """Configuration schema for the billing module."""

    default_due_days: int = 14
    bill_number_prefix: str = "INV"
    bill_number_width: int = 4
    fee_line_description: str = "Accommodation and care"

    def __post_init__(self):
        if self.default_due_days < 0:
            raise ValueError("default_due_days cannot be negative")
        if not self.bill_number_prefix:
            raise ValueError("bill_number_prefix cannot be empty")
        if self.bill_number_width < 1:
            raise ValueError("bill_number_width must be at least 1")
        logger.debug(
            "billing_config_initialized",
            extra={"default_due_days": self.default_due_days},
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
