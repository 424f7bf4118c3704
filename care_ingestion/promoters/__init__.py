"""Promoters: create live entities from validated import records."""

from care_ingestion.promoters.base import EntityPromoter
from care_ingestion.promoters.employee import EmployeePromoter
from care_ingestion.promoters.ledger_account import LedgerAccountPromoter
from care_ingestion.promoters.resident import ResidentPromoter


def default_promoters() -> dict[str, EntityPromoter]:
    return {
        p.entity_type: p
        for p in (ResidentPromoter(), EmployeePromoter(), LedgerAccountPromoter())
    }


__all__ = [
    "EmployeePromoter",
    "EntityPromoter",
    "LedgerAccountPromoter",
    "ResidentPromoter",
    "default_promoters",
]
