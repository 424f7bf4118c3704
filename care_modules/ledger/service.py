"""
Ledger Account Service (``care_modules.ledger.service``).

Responsibility
--------------
Chart-of-accounts maintenance for a tenant: account creation and update,
the account hierarchy, status changes, single-sided postings, balances,
the trial balance and the account report.

Architecture position
---------------------
**Modules layer** -- ``LedgerAccountService`` owns the transaction
boundary.  Running debit/credit totals on the account row are updated in
the same transaction as the posting that changes them.

Invariants enforced
-------------------
* ``account_code`` unique per tenant; ``level == parent.level + 1``.
* A child may only be attached to an active parent; the hierarchy has
  no cycles.
* System accounts cannot be updated, deactivated, closed or deleted.
* Accounts with children or a non-zero balance cannot be deactivated
  or closed; accounts with children or transactions cannot be deleted.
* Postings go to active accounts only.

Failure modes
-------------
* ``DuplicateEntityError`` (409), ``LedgerAccountNotFoundError`` (404).
* ``SystemAccountError``, ``AccountHasChildrenError``,
  ``AccountHasBalanceError``, ``AccountHasTransactionsError``,
  ``InactiveAccountError`` (422).
* ``InvalidTransitionError`` (409) for e.g. activating an active account.
"""

from __future__ import annotations

from collections import Counter
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.exceptions import (
    AccountHasBalanceError,
    AccountHasChildrenError,
    AccountHasTransactionsError,
    DuplicateEntityError,
    InactiveAccountError,
    LedgerAccountNotFoundError,
    SystemAccountError,
    ValidationError,
)
from care_kernel.logging_config import get_logger
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import apply_changes, get_scoped, transaction
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
    TrialBalanceLine,
    normal_balance,
)
from care_modules.ledger.orm import LedgerAccountModel, LedgerTransactionModel
from care_modules.ledger.workflows import LEDGER_ACCOUNT_WORKFLOW

logger = get_logger("modules.ledger.service")

ZERO = Decimal("0")

_UPDATABLE_FIELDS = (
    "account_name",
    "account_category",
    "parent_account_id",
    "is_contra_account",
    "is_control_account",
    "requires_reconciliation",
    "department",
    "cost_center",
    "description",
    "care_home_id",
)


class LedgerAccountService:
    """Chart of accounts for one tenant at a time."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._audit = audit or AuditService(session, clock=self._clock)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _get(self, account_id: UUID, tenant_id: UUID) -> LedgerAccountModel:
        return get_scoped(
            self._session, LedgerAccountModel, account_id, tenant_id, LedgerAccountNotFoundError
        )

    def _children(self, account_id: UUID) -> list[LedgerAccountModel]:
        return list(
            self._session.execute(
                select(LedgerAccountModel)
                .where(LedgerAccountModel.parent_account_id == account_id)
                .order_by(LedgerAccountModel.account_code)
            ).scalars().all()
        )

    def _descendants(self, account_id: UUID) -> list[LedgerAccountModel]:
        found: list[LedgerAccountModel] = []
        pending = [account_id]
        while pending:
            children = self._children(pending.pop(0))
            found.extend(children)
            pending.extend(child.id for child in children)
        return found

    def _active_parent(self, parent_id: UUID, tenant_id: UUID) -> LedgerAccountModel:
        parent = self._get(parent_id, tenant_id)
        if parent.status != AccountStatus.ACTIVE.value:
            raise InactiveAccountError(parent.account_code)
        return parent

    def _record(self, action: str, orm: LedgerAccountModel, actor_id: UUID, **details: Any) -> None:
        self._audit.record(
            action, "LedgerAccount", orm.id, tenant_id=orm.tenant_id, actor_id=actor_id,
            details={"account_code": orm.account_code, **details},
        )

    # -------------------------------------------------------------------------
    # Create / read / update
    # -------------------------------------------------------------------------

    def create_account(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        account_code: str,
        account_name: str,
        account_type: AccountType,
        account_category: AccountCategory | None = None,
        parent_account_id: UUID | None = None,
        care_home_id: UUID | None = None,
        is_system_account: bool = False,
        is_contra_account: bool = False,
        is_control_account: bool = False,
        requires_reconciliation: bool = False,
        department: str | None = None,
        cost_center: str | None = None,
        description: str | None = None,
    ) -> LedgerAccount:
        code = (account_code or "").strip()
        if not code:
            raise ValidationError("account_code is required", "account_code")
        if not (account_name or "").strip():
            raise ValidationError("account_name is required", "account_name")
        try:
            account_type = AccountType(account_type)
            category = AccountCategory(account_category) if account_category else None
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        with transaction(self._session, "create_ledger_account"):
            clash = self._session.execute(
                select(LedgerAccountModel.id).where(
                    LedgerAccountModel.tenant_id == tenant_id,
                    LedgerAccountModel.account_code == code,
                )
            ).scalar_one_or_none()
            if clash is not None:
                raise DuplicateEntityError("LedgerAccount", "account_code", code)
            level = 0
            if parent_account_id is not None:
                level = self._active_parent(parent_account_id, tenant_id).level + 1
            orm = LedgerAccountModel(
                id=uuid4(),
                tenant_id=tenant_id,
                care_home_id=care_home_id,
                account_code=code,
                account_name=account_name.strip(),
                account_type=account_type.value,
                account_category=category.value if category else None,
                parent_account_id=parent_account_id,
                level=level,
                status=LEDGER_ACCOUNT_WORKFLOW.initial_state,
                is_system_account=is_system_account,
                is_contra_account=is_contra_account,
                is_control_account=is_control_account,
                requires_reconciliation=requires_reconciliation,
                department=department,
                cost_center=cost_center,
                description=description,
                debit_balance=ZERO,
                credit_balance=ZERO,
                transaction_count=0,
                created_by_id=actor_id,
            )
            self._session.add(orm)
            self._session.flush()
            self._record("LEDGER_ACCOUNT_CREATED", orm, actor_id, account_type=account_type.value)
            result = orm.to_dto()

        logger.info(
            "ledger_account_created",
            extra={"account_code": code, "account_type": account_type.value, "level": level},
        )
        return result

    def get_account(self, account_id: UUID, tenant_id: UUID) -> LedgerAccount:
        return self._get(account_id, tenant_id).to_dto()

    def get_account_by_code(self, tenant_id: UUID, account_code: str) -> LedgerAccount:
        orm = self._session.execute(
            select(LedgerAccountModel).where(
                LedgerAccountModel.tenant_id == tenant_id,
                LedgerAccountModel.account_code == account_code,
            )
        ).scalar_one_or_none()
        if orm is None:
            raise LedgerAccountNotFoundError(account_code)
        return orm.to_dto()

    def search_accounts(
        self, tenant_id: UUID, criteria: AccountSearchCriteria | None = None
    ) -> list[LedgerAccount]:
        criteria = criteria or AccountSearchCriteria()
        stmt = select(LedgerAccountModel).where(LedgerAccountModel.tenant_id == tenant_id)
        if criteria.account_type is not None:
            stmt = stmt.where(LedgerAccountModel.account_type == AccountType(criteria.account_type).value)
        if criteria.account_category is not None:
            stmt = stmt.where(
                LedgerAccountModel.account_category == AccountCategory(criteria.account_category).value
            )
        if criteria.status is not None:
            stmt = stmt.where(LedgerAccountModel.status == AccountStatus(criteria.status).value)
        if criteria.care_home_id is not None:
            stmt = stmt.where(LedgerAccountModel.care_home_id == criteria.care_home_id)
        if criteria.parent_account_id is not None:
            stmt = stmt.where(LedgerAccountModel.parent_account_id == criteria.parent_account_id)
        if criteria.level is not None:
            stmt = stmt.where(LedgerAccountModel.level == criteria.level)
        if criteria.department is not None:
            stmt = stmt.where(LedgerAccountModel.department == criteria.department)
        if criteria.cost_center is not None:
            stmt = stmt.where(LedgerAccountModel.cost_center == criteria.cost_center)
        if criteria.is_system_account is not None:
            stmt = stmt.where(LedgerAccountModel.is_system_account == criteria.is_system_account)
        if criteria.text:
            pattern = f"%{criteria.text.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(LedgerAccountModel.account_code).like(pattern),
                    func.lower(LedgerAccountModel.account_name).like(pattern),
                )
            )
        rows = self._session.execute(stmt.order_by(LedgerAccountModel.account_code)).scalars().all()
        return [r.to_dto() for r in rows]

    def update_account(
        self, account_id: UUID, tenant_id: UUID, actor_id: UUID, **changes: Any
    ) -> LedgerAccount:
        """Update account fields.  Re-parenting recomputes levels for the subtree."""
        if changes.get("account_category") is not None:
            changes["account_category"] = AccountCategory(changes["account_category"])

        with transaction(self._session, "update_ledger_account"):
            orm = self._get(account_id, tenant_id)
            if orm.is_system_account:
                raise SystemAccountError(orm.account_code, "updated")
            new_parent = changes.get("parent_account_id")
            if new_parent is not None and new_parent != orm.parent_account_id:
                if new_parent == orm.id or new_parent in {d.id for d in self._descendants(orm.id)}:
                    raise ValidationError(
                        "An account cannot be its own ancestor", "parent_account_id"
                    )
                self._active_parent(new_parent, tenant_id)
            changed = apply_changes(orm, changes, _UPDATABLE_FIELDS, actor_id)
            if "parent_account_id" in changed:
                self._relevel(orm, tenant_id)
            if changed:
                self._session.flush()
                self._record("LEDGER_ACCOUNT_UPDATED", orm, actor_id, fields=changed)
            result = orm.to_dto()

        logger.info("ledger_account_updated", extra={"account_id": str(account_id), "fields": changed})
        return result

    def _relevel(self, orm: LedgerAccountModel, tenant_id: UUID) -> None:
        parent = self._get(orm.parent_account_id, tenant_id) if orm.parent_account_id else None
        orm.level = parent.level + 1 if parent is not None else 0
        self._session.flush()
        for child in self._children(orm.id):
            self._relevel(child, tenant_id)

    # -------------------------------------------------------------------------
    # Status changes and deletion
    # -------------------------------------------------------------------------

    def _guard_removal(self, orm: LedgerAccountModel, operation: str) -> None:
        if orm.is_system_account:
            raise SystemAccountError(orm.account_code, operation)
        if self._children(orm.id):
            raise AccountHasChildrenError(orm.account_code, operation)

    def _set_status(self, account_id: UUID, tenant_id: UUID, actor_id: UUID, action: str,
                    operation: str) -> LedgerAccount:
        with transaction(self._session, f"{action}_ledger_account"):
            orm = self._get(account_id, tenant_id)
            transition = LEDGER_ACCOUNT_WORKFLOW.transition_for(orm.status, action)
            if action in ("deactivate", "close"):
                self._guard_removal(orm, operation)
                net = orm.debit_balance - orm.credit_balance
                if net != 0:
                    raise AccountHasBalanceError(orm.account_code, net, operation)
            orm.status = transition.to_state
            orm.updated_by_id = actor_id
            self._session.flush()
            self._record(f"LEDGER_ACCOUNT_{action.upper()}", orm, actor_id, status=orm.status)
            result = orm.to_dto()
        logger.info("ledger_account_status_changed",
                    extra={"account_code": result.account_code, "status": result.status.value})
        return result

    def activate_account(self, account_id: UUID, tenant_id: UUID, actor_id: UUID) -> LedgerAccount:
        return self._set_status(account_id, tenant_id, actor_id, "activate", "activated")

    def deactivate_account(self, account_id: UUID, tenant_id: UUID, actor_id: UUID) -> LedgerAccount:
        return self._set_status(account_id, tenant_id, actor_id, "deactivate", "deactivated")

    def close_account(self, account_id: UUID, tenant_id: UUID, actor_id: UUID) -> LedgerAccount:
        return self._set_status(account_id, tenant_id, actor_id, "close", "closed")

    def delete_account(self, account_id: UUID, tenant_id: UUID, actor_id: UUID) -> None:
        with transaction(self._session, "delete_ledger_account"):
            orm = self._get(account_id, tenant_id)
            self._guard_removal(orm, "deleted")
            if orm.transaction_count > 0:
                raise AccountHasTransactionsError(orm.account_code)
            self._record("LEDGER_ACCOUNT_DELETED", orm, actor_id, account_name=orm.account_name)
            self._session.delete(orm)
            self._session.flush()
        logger.info("ledger_account_deleted", extra={"account_id": str(account_id)})

    # -------------------------------------------------------------------------
    # Postings and balances
    # -------------------------------------------------------------------------

    def post_transaction(
        self,
        account_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        debit: Decimal = ZERO,
        credit: Decimal = ZERO,
        transaction_date: date | None = None,
        description: str | None = None,
        reference: str | None = None,
    ) -> LedgerTransaction:
        try:
            txn = LedgerTransaction(
                id=uuid4(),
                tenant_id=tenant_id,
                account_id=account_id,
                transaction_date=transaction_date or self._clock.today(),
                debit=Decimal(str(debit)),
                credit=Decimal(str(credit)),
                description=description,
                reference=reference,
            )
        except ValueError as exc:
            raise ValidationError(str(exc), "debit") from exc

        with transaction(self._session, "post_ledger_transaction"):
            orm = self._get(account_id, tenant_id)
            if orm.status != AccountStatus.ACTIVE.value:
                raise InactiveAccountError(orm.account_code)
            self._session.add(
                LedgerTransactionModel.from_dto(txn, orm.care_home_id, created_by_id=actor_id)
            )
            orm.debit_balance = orm.debit_balance + txn.debit
            orm.credit_balance = orm.credit_balance + txn.credit
            orm.transaction_count += 1
            if orm.last_transaction_date is None or txn.transaction_date > orm.last_transaction_date:
                orm.last_transaction_date = txn.transaction_date
            orm.updated_by_id = actor_id
            self._session.flush()
            self._record("LEDGER_TRANSACTION_POSTED", orm, actor_id,
                         debit=str(txn.debit), credit=str(txn.credit), reference=reference)

        logger.info(
            "ledger_transaction_posted",
            extra={"account_id": str(account_id), "debit": str(txn.debit), "credit": str(txn.credit)},
        )
        return txn

    def _totals(self, account_id: UUID, as_of: date | None) -> tuple[Decimal, Decimal]:
        stmt = select(
            func.coalesce(func.sum(LedgerTransactionModel.debit), 0),
            func.coalesce(func.sum(LedgerTransactionModel.credit), 0),
        ).where(LedgerTransactionModel.account_id == account_id)
        if as_of is not None:
            stmt = stmt.where(LedgerTransactionModel.transaction_date <= as_of)
        debit, credit = self._session.execute(stmt).one()
        return Decimal(str(debit)), Decimal(str(credit))

    def get_balance(
        self, account_id: UUID, tenant_id: UUID, as_of: date | None = None
    ) -> AccountBalance:
        """Normal-balance-aware balance, optionally as of a date."""
        orm = self._get(account_id, tenant_id)
        if as_of is None:
            debit, credit = Decimal(orm.debit_balance), Decimal(orm.credit_balance)
        else:
            debit, credit = self._totals(orm.id, as_of)
        side = normal_balance(AccountType(orm.account_type), orm.is_contra_account)
        net = debit - credit
        return AccountBalance(
            account_id=orm.id,
            account_code=orm.account_code,
            debit_total=debit,
            credit_total=credit,
            net_balance=net,
            balance=net if side == BalanceSide.DEBIT else -net,
            normal_side=side,
        )

    def list_transactions(
        self, account_id: UUID, tenant_id: UUID, since: date | None = None, until: date | None = None
    ) -> list[LedgerTransaction]:
        self._get(account_id, tenant_id)
        stmt = select(LedgerTransactionModel).where(LedgerTransactionModel.account_id == account_id)
        if since is not None:
            stmt = stmt.where(LedgerTransactionModel.transaction_date >= since)
        if until is not None:
            stmt = stmt.where(LedgerTransactionModel.transaction_date <= until)
        rows = self._session.execute(
            stmt.order_by(LedgerTransactionModel.transaction_date, LedgerTransactionModel.created_at)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    # -------------------------------------------------------------------------
    # Hierarchy and reports
    # -------------------------------------------------------------------------

    def get_account_hierarchy(self, account_id: UUID, tenant_id: UUID) -> list[LedgerAccount]:
        """Path from the root account down to ``account_id``."""
        path = [self._get(account_id, tenant_id)]
        while path[-1].parent_account_id is not None:
            path.append(self._get(path[-1].parent_account_id, tenant_id))
        return [orm.to_dto() for orm in reversed(path)]

    def get_all_child_accounts(self, account_id: UUID, tenant_id: UUID) -> list[LedgerAccount]:
        """Every descendant, breadth first."""
        self._get(account_id, tenant_id)
        return [orm.to_dto() for orm in self._descendants(account_id)]

    def get_chart_of_accounts(
        self, tenant_id: UUID, care_home_id: UUID | None = None
    ) -> list[LedgerAccount]:
        return self.search_accounts(tenant_id, AccountSearchCriteria(care_home_id=care_home_id))

    def get_trial_balance(
        self, tenant_id: UUID, as_of: date | None = None, care_home_id: UUID | None = None
    ) -> TrialBalance:
        as_of = as_of or self._clock.today()
        lines: list[TrialBalanceLine] = []
        for account in self.get_chart_of_accounts(tenant_id, care_home_id):
            debit, credit = self._totals(account.id, as_of)
            net = debit - credit
            if net == 0 and debit == 0:
                continue
            lines.append(
                TrialBalanceLine(
                    account_id=account.id,
                    account_code=account.account_code,
                    account_name=account.account_name,
                    account_type=account.account_type,
                    debit=net if net > 0 else ZERO,
                    credit=-net if net < 0 else ZERO,
                )
            )
        trial = TrialBalance(
            as_of=as_of,
            lines=tuple(lines),
            total_debits=sum((l.debit for l in lines), ZERO),
            total_credits=sum((l.credit for l in lines), ZERO),
        )
        log = logger.info if trial.is_balanced else logger.warning
        log(
            "trial_balance_computed",
            extra={"as_of": as_of.isoformat(), "total_debits": str(trial.total_debits),
                   "total_credits": str(trial.total_credits), "is_balanced": trial.is_balanced},
        )
        return trial

    def get_account_report(
        self, tenant_id: UUID, care_home_id: UUID | None = None
    ) -> LedgerAccountReport:
        accounts = self.get_chart_of_accounts(tenant_id, care_home_id)
        return LedgerAccountReport(
            total_accounts=len(accounts),
            active_accounts=sum(1 for a in accounts if a.is_active),
            inactive_accounts=sum(1 for a in accounts if not a.is_active),
            system_accounts=sum(1 for a in accounts if a.is_system_account),
            contra_accounts=sum(1 for a in accounts if a.is_contra_account),
            control_accounts=sum(1 for a in accounts if a.is_control_account),
            accounts_by_type={
                t.value: sum(1 for a in accounts if a.account_type == t) for t in AccountType
            },
            accounts_by_status={
                s.value: sum(1 for a in accounts if a.status == s) for s in AccountStatus
            },
            department_breakdown=dict(Counter(a.department or "Unknown" for a in accounts)),
            cost_center_breakdown=dict(Counter(a.cost_center or "Unknown" for a in accounts)),
            level_breakdown=dict(Counter(a.level for a in accounts)),
            total_debit_balance=sum((Decimal(a.debit_balance) for a in accounts), ZERO),
            total_credit_balance=sum((Decimal(a.credit_balance) for a in accounts), ZERO),
        )
