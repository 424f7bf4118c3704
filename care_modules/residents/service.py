"""
Residents Module Service (``care_modules.residents.service``).

Responsibility
--------------
Admission, update, search, consent capture, absence and discharge of
residents.  Every mutation commits in its own transaction and is
recorded through ``AuditService``.

Invariants enforced
-------------------
* NHS number passes the modulus-11 check and is unique per tenant.
* Discharge date is on or after the admission date.
* Status changes follow ``RESIDENT_WORKFLOW``.

Failure modes
-------------
* ``InvalidNHSNumberError``, ``ValidationError``  -> bad input.
* ``DuplicateEntityError``  -> NHS number already registered in the tenant.
* ``InvalidTransitionError``  -> e.g. discharging a discharged resident.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.domain.validation import require, validate_nhs_number, validate_uk_phone
from care_kernel.exceptions import DuplicateEntityError, ResidentNotFoundError, ValidationError
from care_kernel.logging_config import get_logger
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import apply_changes, get_scoped, transaction
from care_modules.residents.models import CareLevel, FundingSource, Resident, ResidentStatus
from care_modules.residents.orm import ResidentModel
from care_modules.residents.workflows import RESIDENT_WORKFLOW

logger = get_logger("modules.residents.service")

_UPDATABLE_FIELDS = (
    "first_name",
    "last_name",
    "preferred_name",
    "gender",
    "care_level",
    "room_number",
    "weekly_fee",
    "funding_source",
    "allergies",
    "medical_conditions",
    "gp_name",
    "next_of_kin_name",
    "next_of_kin_phone",
    "care_home_id",
)


class ResidentService:
    """Resident records for one tenant at a time."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._audit = audit or AuditService(session, clock=self._clock)

    def _get(self, resident_id: UUID, tenant_id: UUID) -> ResidentModel:
        return get_scoped(self._session, ResidentModel, resident_id, tenant_id, ResidentNotFoundError)

    def admit_resident(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        first_name: str,
        last_name: str,
        nhs_number: str,
        date_of_birth: date,
        admission_date: date,
        care_level: CareLevel,
        funding_source: FundingSource,
        weekly_fee: Decimal,
        care_home_id: UUID | None = None,
        preferred_name: str | None = None,
        gender: str | None = None,
        room_number: str | None = None,
        allergies: tuple[str, ...] | list[str] = (),
        medical_conditions: tuple[str, ...] | list[str] = (),
        gp_name: str | None = None,
        next_of_kin_name: str | None = None,
        next_of_kin_phone: str | None = None,
        gdpr_consent_given: bool = False,
    ) -> Resident:
        require(first_name, "first_name")
        require(last_name, "last_name")
        nhs_number = validate_nhs_number(nhs_number)
        try:
            resident = Resident(
                id=uuid4(),
                tenant_id=tenant_id,
                care_home_id=care_home_id,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                preferred_name=preferred_name,
                nhs_number=nhs_number,
                date_of_birth=date_of_birth,
                gender=gender,
                admission_date=admission_date,
                care_level=CareLevel(care_level),
                funding_source=FundingSource(funding_source),
                weekly_fee=Decimal(str(weekly_fee)),
                room_number=room_number,
                allergies=tuple(allergies),
                medical_conditions=tuple(medical_conditions),
                gp_name=gp_name,
                next_of_kin_name=next_of_kin_name,
                next_of_kin_phone=validate_uk_phone(next_of_kin_phone) if next_of_kin_phone else None,
                gdpr_consent_given=gdpr_consent_given,
                gdpr_consent_date=self._clock.now() if gdpr_consent_given else None,
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        with transaction(self._session, "admit_resident"):
            clash = self._session.execute(
                select(ResidentModel.id).where(
                    ResidentModel.tenant_id == tenant_id,
                    ResidentModel.nhs_number == nhs_number,
                )
            ).scalar_one_or_none()
            if clash is not None:
                raise DuplicateEntityError("Resident", "nhs_number", nhs_number)
            orm = ResidentModel.from_dto(resident, created_by_id=actor_id)
            self._session.add(orm)
            self._session.flush()
            self._audit.record(
                "RESIDENT_ADMITTED", "Resident", orm.id, tenant_id=tenant_id,
                actor_id=actor_id, details={"care_level": resident.care_level.value},
            )

        logger.info(
            "resident_admitted",
            extra={"resident_id": str(resident.id), "care_home_id": str(care_home_id)},
        )
        return resident

    def get_resident(self, resident_id: UUID, tenant_id: UUID) -> Resident:
        return self._get(resident_id, tenant_id).to_dto()

    def update_resident(
        self, resident_id: UUID, tenant_id: UUID, actor_id: UUID, **changes: Any
    ) -> Resident:
        """Update resident fields.  Re-applying the same changes is a no-op."""
        for key in ("allergies", "medical_conditions"):
            if changes.get(key) is not None:
                changes[key] = list(changes[key])
        if changes.get("weekly_fee") is not None:
            changes["weekly_fee"] = Decimal(str(changes["weekly_fee"]))
        if changes.get("care_level") is not None:
            changes["care_level"] = CareLevel(changes["care_level"])
        if changes.get("funding_source") is not None:
            changes["funding_source"] = FundingSource(changes["funding_source"])
        if changes.get("next_of_kin_phone"):
            changes["next_of_kin_phone"] = validate_uk_phone(changes["next_of_kin_phone"])

        with transaction(self._session, "update_resident"):
            orm = self._get(resident_id, tenant_id)
            changed = apply_changes(orm, changes, _UPDATABLE_FIELDS, actor_id)
            try:
                result = orm.to_dto()
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            if changed:
                self._session.flush()
                self._audit.record(
                    "RESIDENT_UPDATED", "Resident", resident_id, tenant_id=tenant_id,
                    actor_id=actor_id, details={"fields": changed},
                )

        logger.info("resident_updated", extra={"resident_id": str(resident_id), "fields": changed})
        return result

    def search_residents(
        self,
        tenant_id: UUID,
        care_home_id: UUID | None = None,
        status: ResidentStatus | None = None,
        name_query: str | None = None,
        care_level: CareLevel | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Resident], int]:
        """Filtered, paginated search.  Returns (page, total matching)."""
        if limit <= 0 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        conditions = [ResidentModel.tenant_id == tenant_id]
        if care_home_id is not None:
            conditions.append(ResidentModel.care_home_id == care_home_id)
        if status is not None:
            conditions.append(ResidentModel.status == ResidentStatus(status).value)
        if care_level is not None:
            conditions.append(ResidentModel.care_level == CareLevel(care_level).value)
        if name_query:
            pattern = f"%{name_query.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(ResidentModel.first_name).like(pattern),
                    func.lower(ResidentModel.last_name).like(pattern),
                    func.lower(ResidentModel.preferred_name).like(pattern),
                )
            )

        total = self._session.execute(
            select(func.count()).select_from(ResidentModel).where(*conditions)
        ).scalar_one()
        rows = self._session.execute(
            select(ResidentModel)
            .where(*conditions)
            .order_by(ResidentModel.last_name, ResidentModel.first_name, ResidentModel.id)
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        return [r.to_dto() for r in rows], total

    def _transition(
        self,
        resident_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        action: str,
        audit_action: str,
        details: dict[str, Any] | None = None,
        **fields: Any,
    ) -> Resident:
        with transaction(self._session, action):
            orm = self._get(resident_id, tenant_id)
            orm.status = RESIDENT_WORKFLOW.transition_for(orm.status, action).to_state
            for key, value in fields.items():
                setattr(orm, key, value)
            orm.updated_by_id = actor_id
            self._session.flush()
            self._audit.record(
                audit_action, "Resident", resident_id, tenant_id=tenant_id,
                actor_id=actor_id, details=details or {},
            )
            result = orm.to_dto()
        logger.info(
            "resident_status_changed",
            extra={"resident_id": str(resident_id), "action": action, "status": result.status.value},
        )
        return result

    def discharge_resident(
        self,
        resident_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        discharge_date: date,
        reason: str | None = None,
    ) -> Resident:
        current = self._get(resident_id, tenant_id)
        if discharge_date < current.admission_date:
            raise ValidationError("discharge_date cannot precede admission_date", "discharge_date")
        return self._transition(
            resident_id, tenant_id, actor_id, "discharge", "RESIDENT_DISCHARGED",
            details={"discharge_date": discharge_date.isoformat()},
            discharge_date=discharge_date, discharge_reason=reason,
        )

    def start_absence(self, resident_id: UUID, tenant_id: UUID, actor_id: UUID) -> Resident:
        return self._transition(
            resident_id, tenant_id, actor_id, "start_absence", "RESIDENT_ABSENCE_STARTED"
        )

    def end_absence(self, resident_id: UUID, tenant_id: UUID, actor_id: UUID) -> Resident:
        return self._transition(
            resident_id, tenant_id, actor_id, "return", "RESIDENT_ABSENCE_ENDED"
        )

    def record_gdpr_consent(
        self, resident_id: UUID, tenant_id: UUID, actor_id: UUID, given: bool
    ) -> Resident:
        with transaction(self._session, "record_gdpr_consent"):
            orm = self._get(resident_id, tenant_id)
            orm.gdpr_consent_given = given
            orm.gdpr_consent_date = self._clock.now()
            orm.updated_by_id = actor_id
            self._session.flush()
            self._audit.record(
                "RESIDENT_CONSENT_RECORDED", "Resident", resident_id, tenant_id=tenant_id,
                actor_id=actor_id, details={"gdpr_consent_given": given},
            )
            result = orm.to_dto()
        return result

    def count_by_status(self, tenant_id: UUID, care_home_id: UUID | None = None) -> dict[str, int]:
        stmt = (
            select(ResidentModel.status, func.count())
            .where(ResidentModel.tenant_id == tenant_id)
            .group_by(ResidentModel.status)
        )
        if care_home_id is not None:
            stmt = stmt.where(ResidentModel.care_home_id == care_home_id)
        counts = {s.value: 0 for s in ResidentStatus}
        counts.update({status: count for status, count in self._session.execute(stmt).all()})
        return counts
