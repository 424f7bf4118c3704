"""
Ledger ORM Persistence Models (``care_modules.ledger.orm``).

Invariants enforced:
    - ``account_code`` is unique per tenant (uq_ledger_account_code).
    - ``debit_balance`` / ``credit_balance`` are running totals of the
      account's transactions, updated in the posting transaction.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from care_kernel.db.base import Money, TenantScopedBase
from care_kernel.domain.money import money


class LedgerAccountModel(TenantScopedBase):
    """ORM model for ``LedgerAccount``."""

    __tablename__ = "ledger_accounts"

    account_code: Mapped[str] = mapped_column(String(20), nullable=False)
    account_name: Mapped[str] = mapped_column(String(200), nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False)
    account_category: Mapped[str | None] = mapped_column(String(40), nullable=True)
    parent_account_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("ledger_accounts.id"), nullable=True,
    )
    level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    is_system_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_contra_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_control_account: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_reconciliation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cost_center: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    debit_balance: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    credit_balance: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "account_code", name="uq_ledger_account_code"),
        Index("idx_ledger_account_parent", "parent_account_id"),
        Index("idx_ledger_account_type", "tenant_id", "account_type"),
    )

    def to_dto(self):
        from care_modules.ledger.models import (
            AccountCategory,
            AccountStatus,
            AccountType,
            LedgerAccount,
        )
        return LedgerAccount(
            id=self.id,
            tenant_id=self.tenant_id,
            care_home_id=self.care_home_id,
            account_code=self.account_code,
            account_name=self.account_name,
            account_type=AccountType(self.account_type),
            account_category=(
                AccountCategory(self.account_category) if self.account_category else None
            ),
            parent_account_id=self.parent_account_id,
            level=self.level,
            status=AccountStatus(self.status),
            is_system_account=self.is_system_account,
            is_contra_account=self.is_contra_account,
            is_control_account=self.is_control_account,
            requires_reconciliation=self.requires_reconciliation,
            department=self.department,
            cost_center=self.cost_center,
            description=self.description,
            debit_balance=money(self.debit_balance),
            credit_balance=money(self.credit_balance),
            transaction_count=self.transaction_count,
            last_transaction_date=self.last_transaction_date,
        )

    def __repr__(self) -> str:
        return f"<LedgerAccountModel {self.account_code}: {self.account_name}>"


class LedgerTransactionModel(TenantScopedBase):
    """ORM model for ``LedgerTransaction``.  Append-only."""

    __tablename__ = "ledger_transactions"

    account_id: Mapped[UUID] = mapped_column(ForeignKey("ledger_accounts.id"), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    debit: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    credit: Mapped[Decimal] = mapped_column(Money(), default=Decimal("0"), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("idx_ledger_txn_account_date", "account_id", "transaction_date"),
    )

    def to_dto(self):
        from care_modules.ledger.models import LedgerTransaction
        return LedgerTransaction(
            id=self.id,
            tenant_id=self.tenant_id,
            account_id=self.account_id,
            transaction_date=self.transaction_date,
            debit=money(self.debit),
            credit=money(self.credit),
            description=self.description,
            reference=self.reference,
        )

    @classmethod
    def from_dto(cls, dto, care_home_id: UUID | None, created_by_id: UUID) -> "LedgerTransactionModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            care_home_id=care_home_id,
            account_id=dto.account_id,
            transaction_date=dto.transaction_date,
            debit=dto.debit,
            credit=dto.credit,
            description=dto.description,
            reference=dto.reference,
            created_by_id=created_by_id,
        )
