"""
Ledger Module (``care_modules.ledger``).

Chart of accounts with a parent/child hierarchy, single-sided postings,
normal-balance-aware balances, a trial balance and an account report.
"""

from care_modules.ledger.models import (
    AccountBalance,
    AccountCategory,
    AccountSearchCriteria,
    AccountStatus,
    AccountType,
    BalanceSide,
    LedgerAccount,
    LedgerAccountReport,
    LedgerTransaction,
    TrialBalance,
    normal_balance,
)
from care_modules.ledger.workflows import LEDGER_ACCOUNT_WORKFLOW

__all__ = [
    "AccountBalance",
    "AccountCategory",
    "AccountSearchCriteria",
    "AccountStatus",
    "AccountType",
    "BalanceSide",
    "LEDGER_ACCOUNT_WORKFLOW",
    "LedgerAccount",
    "LedgerAccountReport",
    "LedgerTransaction",
    "TrialBalance",
    "normal_balance",
]
