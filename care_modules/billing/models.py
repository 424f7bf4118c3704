"""
Billing Domain Models (``care_modules.billing.models``).

Frozen value objects for resident bills, their lines, payments and funder
claims.  Amounts are Decimal and quantised to pence.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PayerType(Enum):
    RESIDENT = "resident"
    FAMILY = "family"
    LOCAL_AUTHORITY = "local_authority"
    NHS = "nhs"


FUNDER_PAYER_TYPES = frozenset({PayerType.LOCAL_AUTHORITY, PayerType.NHS})


class BillStatus(Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    WRITTEN_OFF = "written_off"


OPEN_BILL_STATUSES = frozenset({BillStatus.ISSUED, BillStatus.PARTIALLY_PAID, BillStatus.OVERDUE})


class PaymentMethod(Enum):
    BANK_TRANSFER = "bank_transfer"
    DIRECT_DEBIT = "direct_debit"
    CARD = "card"
    CHEQUE = "cheque"
    CASH = "cash"


@dataclass(frozen=True)
class BillLine:
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    id: UUID | None = None

    def __post_init__(self):
        if not self.description or not self.description.strip():
            raise ValueError("description is required")
        if self.quantity <= 0:
            raise ValueError("quantity must be positive")


@dataclass(frozen=True)
class Bill:
    id: UUID
    tenant_id: UUID
    resident_id: UUID
    bill_number: str
    payer_type: PayerType
    period_start: date
    period_end: date
    lines: tuple[BillLine, ...]
    subtotal: Decimal
    total: Decimal
    amount_paid: Decimal = Decimal("0")
    status: BillStatus = BillStatus.DRAFT
    care_home_id: UUID | None = None
    payer_reference: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    notes: str | None = None
    write_off_reason: str | None = None

    def __post_init__(self):
        if self.period_start > self.period_end:
            raise ValueError("period_start must not be after period_end")
        if self.amount_paid < 0:
            raise ValueError("amount_paid cannot be negative")

    @property
    def outstanding(self) -> Decimal:
        return self.total - self.amount_paid

    @property
    def is_claim(self) -> bool:
        return self.payer_type in FUNDER_PAYER_TYPES


@dataclass(frozen=True)
class Payment:
    id: UUID
    tenant_id: UUID
    bill_id: UUID
    amount: Decimal
    method: PaymentMethod
    received_on: date
    reference: str | None = None

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError("payment amount must be positive")
