"""
Billing Module (``care_modules.billing``).

Resident invoices, local-authority and NHS funder claims, payments,
overdue sweeps and write-offs.
"""

from care_modules.billing.config import BillingConfig
from care_modules.billing.models import (
    Bill,
    BillLine,
    BillStatus,
    PayerType,
    Payment,
    PaymentMethod,
)
from care_modules.billing.workflows import BILL_WORKFLOW

__all__ = [
    "BILL_WORKFLOW",
    "Bill",
    "BillLine",
    "BillStatus",
    "BillingConfig",
    "PayerType",
    "Payment",
    "PaymentMethod",
]
