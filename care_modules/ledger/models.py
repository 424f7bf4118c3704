"""
Ledger Domain Models (``care_modules.ledger.models``).

Responsibility
--------------
Frozen value objects for the chart of accounts: ledger accounts, the
transactions posted to them, balances, the trial balance and the
account report.

Invariants enforced
-------------------
* All monetary fields use ``Decimal``.
* A transaction has exactly one non-zero side.
* Normal balance: asset and expense accounts are debit-normal, the rest
  credit-normal; a contra account takes the opposite side.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class AccountType(Enum):
    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class AccountCategory(Enum):
    CURRENT_ASSET = "current_asset"
    FIXED_ASSET = "fixed_asset"
    CURRENT_LIABILITY = "current_liability"
    LONG_TERM_LIABILITY = "long_term_liability"
    EQUITY = "equity"
    RESIDENT_FEES = "resident_fees"
    FUNDING_INCOME = "funding_income"
    OTHER_INCOME = "other_income"
    STAFF_COSTS = "staff_costs"
    CARE_SUPPLIES = "care_supplies"
    PREMISES = "premises"
    ADMINISTRATION = "administration"
    OTHER_EXPENSE = "other_expense"


class AccountStatus(Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CLOSED = "closed"


class BalanceSide(Enum):
    DEBIT = "debit"
    CREDIT = "credit"


DEBIT_NORMAL_TYPES = frozenset({AccountType.ASSET, AccountType.EXPENSE})


def normal_balance(account_type: AccountType, is_contra: bool = False) -> BalanceSide:
    side = BalanceSide.DEBIT if account_type in DEBIT_NORMAL_TYPES else BalanceSide.CREDIT
    if is_contra:
        side = BalanceSide.CREDIT if side == BalanceSide.DEBIT else BalanceSide.DEBIT
    return side


@dataclass(frozen=True)
class LedgerAccount:
    id: UUID
    tenant_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    account_category: AccountCategory | None = None
    parent_account_id: UUID | None = None
    level: int = 0
    status: AccountStatus = AccountStatus.ACTIVE
    care_home_id: UUID | None = None
    is_system_account: bool = False
    is_contra_account: bool = False
    is_control_account: bool = False
    requires_reconciliation: bool = False
    department: str | None = None
    cost_center: str | None = None
    description: str | None = None
    debit_balance: Decimal = Decimal("0")
    credit_balance: Decimal = Decimal("0")
    transaction_count: int = 0
    last_transaction_date: date | None = None

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    @property
    def normal_side(self) -> BalanceSide:
        return normal_balance(self.account_type, self.is_contra_account)

    @property
    def balance(self) -> Decimal:
        """Balance signed so that a normal balance is positive."""
        net = self.debit_balance - self.credit_balance
        return net if self.normal_side == BalanceSide.DEBIT else -net


@dataclass(frozen=True)
class LedgerTransaction:
    id: UUID
    tenant_id: UUID
    account_id: UUID
    transaction_date: date
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    description: str | None = None
    reference: str | None = None

    def __post_init__(self):
        if self.debit < 0 or self.credit < 0:
            raise ValueError("debit and credit cannot be negative")
        if (self.debit > 0) == (self.credit > 0):
            raise ValueError("exactly one of debit or credit must be positive")


@dataclass(frozen=True)
class AccountBalance:
    account_id: UUID
    account_code: str
    debit_total: Decimal
    credit_total: Decimal
    net_balance: Decimal
    balance: Decimal
    normal_side: BalanceSide


@dataclass(frozen=True)
class TrialBalanceLine:
    account_id: UUID
    account_code: str
    account_name: str
    account_type: AccountType
    debit: Decimal
    credit: Decimal


@dataclass(frozen=True)
class TrialBalance:
    as_of: date
    lines: tuple[TrialBalanceLine, ...]
    total_debits: Decimal
    total_credits: Decimal

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


@dataclass(frozen=True)
class AccountSearchCriteria:
    account_type: AccountType | None = None
    account_category: AccountCategory | None = None
    status: AccountStatus | None = None
    care_home_id: UUID | None = None
    parent_account_id: UUID | None = None
    level: int | None = None
    department: str | None = None
    cost_center: str | None = None
    is_system_account: bool | None = None
    text: str | None = None


@dataclass(frozen=True)
class LedgerAccountReport:
    total_accounts: int
    active_accounts: int
    inactive_accounts: int
    system_accounts: int
    contra_accounts: int
    control_accounts: int
    accounts_by_type: dict[str, int] = field(default_factory=dict)
    accounts_by_status: dict[str, int] = field(default_factory=dict)
    department_breakdown: dict[str, int] = field(default_factory=dict)
    cost_center_breakdown: dict[str, int] = field(default_factory=dict)
    level_breakdown: dict[int, int] = field(default_factory=dict)
    total_debit_balance: Decimal = Decimal("0")
    total_credit_balance: Decimal = Decimal("0")

    @property
    def is_balanced(self) -> bool:
        return self.total_debit_balance == self.total_credit_balance
