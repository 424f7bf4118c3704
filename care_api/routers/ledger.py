"""Chart of accounts, postings, balances and reports."""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from care_api.auth import Principal, require_roles
from care_api.deps import AuditDep, ClockDep, SessionDep, active_tenant
from care_api.envelope import ok
from care_modules.ledger.models import AccountCategory, AccountSearchCriteria, AccountStatus, AccountType
from care_modules.ledger.service import LedgerAccountService

router = APIRouter(dependencies=[Depends(active_tenant)])

_FINANCE = ("finance",)


class AccountCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_code: str = Field(min_length=1, max_length=20)
    account_name: str = Field(min_length=1)
    account_type: AccountType
    account_category: Optional[AccountCategory] = None
    parent_account_id: Optional[UUID] = None
    care_home_id: Optional[UUID] = None
    is_contra_account: bool = False
    is_control_account: bool = False
    requires_reconciliation: bool = False
    department: Optional[str] = None
    cost_center: Optional[str] = None
    description: Optional[str] = None


class AccountUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_name: Optional[str] = None
    account_category: Optional[AccountCategory] = None
    parent_account_id: Optional[UUID] = None
    is_contra_account: Optional[bool] = None
    is_control_account: Optional[bool] = None
    requires_reconciliation: Optional[bool] = None
    department: Optional[str] = None
    cost_center: Optional[str] = None
    description: Optional[str] = None
    care_home_id: Optional[UUID] = None


class PostingIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    debit: Decimal = Field(default=Decimal("0"), ge=0)
    credit: Decimal = Field(default=Decimal("0"), ge=0)
    transaction_date: Optional[date] = None
    description: Optional[str] = None
    reference: Optional[str] = None


def _service(session: SessionDep, clock: ClockDep, audit: AuditDep) -> LedgerAccountService:
    return LedgerAccountService(session, clock=clock, audit=audit)


@router.post("/accounts", status_code=201, summary="Create a ledger account")
def create_account(
    body: AccountCreate,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.create_account(principal.tenant_id, principal.user_id, **body.model_dump()))


@router.get("/accounts", summary="Search accounts")
def search_accounts(
    account_type: Optional[AccountType] = None,
    account_category: Optional[AccountCategory] = None,
    status: Optional[AccountStatus] = None,
    care_home_id: Optional[UUID] = None,
    parent_account_id: Optional[UUID] = None,
    department: Optional[str] = None,
    q: Optional[str] = None,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE, "manager")),
):
    criteria = AccountSearchCriteria(
        account_type=account_type, account_category=account_category, status=status,
        care_home_id=care_home_id, parent_account_id=parent_account_id,
        department=department, text=q,
    )
    return ok(service.search_accounts(principal.tenant_id, criteria))


@router.get("/accounts/by-code/{account_code}", summary="Look up an account by code")
def get_account_by_code(
    account_code: str,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE, "manager")),
):
    return ok(service.get_account_by_code(principal.tenant_id, account_code))


@router.get("/accounts/{account_id}", summary="Get an account")
def get_account(
    account_id: UUID,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE, "manager")),
):
    return ok(service.get_account(account_id, principal.tenant_id))


@router.patch("/accounts/{account_id}", summary="Update an account")
def update_account(
    account_id: UUID,
    body: AccountUpdate,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.update_account(
        account_id, principal.tenant_id, principal.user_id, **body.model_dump(exclude_unset=True)
    ))


@router.post("/accounts/{account_id}/activate", summary="Reactivate an account")
def activate_account(
    account_id: UUID,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.activate_account(account_id, principal.tenant_id, principal.user_id))


@router.post("/accounts/{account_id}/deactivate", summary="Deactivate an account")
def deactivate_account(
    account_id: UUID,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.deactivate_account(account_id, principal.tenant_id, principal.user_id))


@router.post("/accounts/{account_id}/close", summary="Close an account")
def close_account(
    account_id: UUID,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.close_account(account_id, principal.tenant_id, principal.user_id))


@router.delete("/accounts/{account_id}", summary="Delete an unused account")
def delete_account(
    account_id: UUID,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    service.delete_account(account_id, principal.tenant_id, principal.user_id)
    return ok({"deleted": account_id})


@router.post("/accounts/{account_id}/transactions", status_code=201, summary="Post a transaction")
def post_transaction(
    account_id: UUID,
    body: PostingIn,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE)),
):
    return ok(service.post_transaction(account_id, principal.tenant_id, principal.user_id, **body.model_dump()))


@router.get("/accounts/{account_id}/transactions", summary="List transactions")
def list_transactions(
    account_id: UUID,
    since: Optional[date] = None,
    until: Optional[date] = None,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE, "manager")),
):
    return ok(service.list_transactions(account_id, principal.tenant_id, since, until))


@router.get("/accounts/{account_id}/balance", summary="Account balance")
def get_balance(
    account_id: UUID,
    as_of: Optional[date] = None,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE, "manager")),
):
    return ok(service.get_balance(account_id, principal.tenant_id, as_of))


@router.get("/accounts/{account_id}/hierarchy", summary="Ancestors of an account, root first")
def get_account_hierarchy(
    account_id: UUID,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE, "manager")),
):
    return ok(service.get_account_hierarchy(account_id, principal.tenant_id))


@router.get("/accounts/{account_id}/children", summary="All descendants of an account")
def get_all_child_accounts(
    account_id: UUID,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE, "manager")),
):
    return ok(service.get_all_child_accounts(account_id, principal.tenant_id))


@router.get("/chart", summary="Chart of accounts")
def get_chart_of_accounts(
    care_home_id: Optional[UUID] = None,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE, "manager")),
):
    return ok(service.get_chart_of_accounts(principal.tenant_id, care_home_id))


@router.get("/trial-balance", summary="Trial balance")
def get_trial_balance(
    as_of: Optional[date] = None,
    care_home_id: Optional[UUID] = None,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE, "manager")),
):
    trial_balance = service.get_trial_balance(principal.tenant_id, as_of, care_home_id)
    return ok({"trial_balance": trial_balance, "is_balanced": trial_balance.is_balanced})


@router.get("/report", summary="Account counts and balances by type")
def get_account_report(
    care_home_id: Optional[UUID] = None,
    service: LedgerAccountService = Depends(_service),
    principal: Principal = Depends(require_roles(*_FINANCE, "manager")),
):
    return ok(service.get_account_report(principal.tenant_id, care_home_id))
