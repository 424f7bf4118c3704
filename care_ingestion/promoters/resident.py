"""Resident promoter: staged rows -> ResidentService.admit_resident."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock
from care_kernel.exceptions import BusinessRuleError, ResidentNotFoundError
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import get_scoped, transaction
from care_modules.billing.orm import BillModel
from care_modules.family_portal.orm import FamilyMemberModel
from care_modules.medication.orm import MedicationRecordModel
from care_modules.residents.models import CareLevel, FundingSource
from care_modules.residents.orm import ResidentModel
from care_modules.residents.service import ResidentService

from care_ingestion.promoters.base import pick

_DEPENDENTS = (BillModel, MedicationRecordModel, FamilyMemberModel)


def _list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [part.strip() for part in str(value).replace(";", ",").split(",") if part.strip()]


class ResidentPromoter:
    entity_type = "resident"

    def promote(
        self,
        session: Session,
        clock: Clock,
        audit: AuditService,
        tenant_id: UUID,
        actor_id: UUID,
        mapped_data: dict[str, Any],
    ) -> UUID:
        resident = ResidentService(session, clock=clock, audit=audit).admit_resident(
            tenant_id=tenant_id,
            actor_id=actor_id,
            first_name=mapped_data["first_name"],
            last_name=mapped_data["last_name"],
            nhs_number=mapped_data["nhs_number"],
            date_of_birth=mapped_data["date_of_birth"],
            admission_date=mapped_data["admission_date"],
            care_level=CareLevel(mapped_data.get("care_level", CareLevel.RESIDENTIAL.value)),
            funding_source=FundingSource(mapped_data.get("funding_source", FundingSource.SELF_FUNDED.value)),
            weekly_fee=mapped_data.get("weekly_fee", 0),
            allergies=_list(mapped_data.get("allergies")),
            medical_conditions=_list(mapped_data.get("medical_conditions")),
            **pick(
                mapped_data, "preferred_name", "gender", "room_number", "gp_name",
                "next_of_kin_name", "next_of_kin_phone",
            ),
        )
        return resident.id

    def remove(
        self,
        session: Session,
        clock: Clock,
        audit: AuditService,
        tenant_id: UUID,
        actor_id: UUID,
        entity_id: UUID,
    ) -> None:
        with transaction(session, "remove_imported_resident"):
            row = get_scoped(session, ResidentModel, entity_id, tenant_id, ResidentNotFoundError)
            for model in _DEPENDENTS:
                count = session.execute(
                    select(func.count()).select_from(model).where(model.resident_id == entity_id)
                ).scalar_one()
                if count:
                    raise BusinessRuleError(
                        f"Resident {entity_id} already has {model.__tablename__} records"
                    )
            session.delete(row)
            session.flush()
            audit.record(
                "RESIDENT_IMPORT_ROLLED_BACK", "Resident", entity_id,
                tenant_id=tenant_id, actor_id=actor_id,
            )
