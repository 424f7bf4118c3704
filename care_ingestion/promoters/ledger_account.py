"""Ledger account promoter: staged chart-of-accounts rows -> LedgerAccountService.

A row may name its parent by ``parent_account_code``; parents must appear
earlier in the file (or already exist).
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock
from care_kernel.services.audit_service import AuditService
from care_modules.ledger.models import AccountCategory, AccountType
from care_modules.ledger.service import LedgerAccountService

from care_ingestion.promoters.base import pick


class LedgerAccountPromoter:
    entity_type = "ledger_account"

    def promote(
        self,
        session: Session,
        clock: Clock,
        audit: AuditService,
        tenant_id: UUID,
        actor_id: UUID,
        mapped_data: dict[str, Any],
    ) -> UUID:
        service = LedgerAccountService(session, clock=clock, audit=audit)
        parent_id = None
        if mapped_data.get("parent_account_code"):
            parent_id = service.get_account_by_code(tenant_id, str(mapped_data["parent_account_code"])).id
        category = mapped_data.get("account_category")
        account = service.create_account(
            tenant_id=tenant_id,
            actor_id=actor_id,
            account_code=str(mapped_data["account_code"]),
            account_name=mapped_data["account_name"],
            account_type=AccountType(str(mapped_data["account_type"]).lower()),
            account_category=AccountCategory(str(category).lower()) if category else None,
            parent_account_id=parent_id,
            **pick(
                mapped_data, "is_contra_account", "is_control_account", "requires_reconciliation",
                "department", "cost_center", "description",
            ),
        )
        return account.id

    def remove(
        self,
        session: Session,
        clock: Clock,
        audit: AuditService,
        tenant_id: UUID,
        actor_id: UUID,
        entity_id: UUID,
    ) -> None:
        LedgerAccountService(session, clock=clock, audit=audit).delete_account(
            entity_id, tenant_id, actor_id
        )
