"""
Family Portal Service (``care_modules.family_portal.service``).

Responsibility
--------------
Family members linked to residents, updates shared with them, their
communication preferences and the read models behind the portal
(member dashboard, tenant statistics).

Architecture position
---------------------
**Modules layer** -- owns the transaction boundary.  Reads resident,
medication and billing tables for the dashboard but never writes them.

Invariants enforced
-------------------
* A member sees only updates for their own resident whose visibility
  their access level allows, and only once they have given consent.
* Emergency updates are visible to every member of the resident.
* At most one primary contact per resident: naming a new one demotes
  the previous one.
* Updating preferences with the same values is a no-op.

Audit relevance
---------------
Adding members, consent changes, preference changes and every shared
update are audited.  Emergency updates are audited under their own action.
"""

from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.domain.validation import require, validate_email, validate_uk_phone
from care_kernel.exceptions import (
    DuplicateEntityError,
    FamilyMemberNotFoundError,
    InvalidChoiceError,
    ResidentNotFoundError,
    ValidationError,
)
from care_kernel.logging_config import get_logger
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import get_scoped, transaction
from care_modules.billing.service import BillingService
from care_modules.family_portal.models import (
    AccessLevel,
    FamilyDashboard,
    FamilyMember,
    FamilyPreferences,
    FamilyUpdate,
    PortalStatistics,
    ResidentSnapshot,
    UpdateType,
    Visibility,
)
from care_modules.family_portal.orm import FamilyMemberModel, FamilyUpdateModel
from care_modules.medication.models import MedicationStatus
from care_modules.medication.orm import MedicationRecordModel
from care_modules.residents.orm import ResidentModel

logger = get_logger("modules.family_portal.service")

DEFAULT_RECENT_LIMIT = 20
STATISTICS_WINDOW = timedelta(days=30)


def _enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise InvalidChoiceError(field, value, [e.value for e in enum_cls]) from exc


class FamilyPortalService:
    """Family members, shared updates and the portal's read models."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._audit = audit or AuditService(session, clock=self._clock)

    def _member(self, member_id: UUID, tenant_id: UUID) -> FamilyMemberModel:
        return get_scoped(self._session, FamilyMemberModel, member_id, tenant_id, FamilyMemberNotFoundError)

    def _resident(self, resident_id: UUID, tenant_id: UUID) -> ResidentModel:
        return get_scoped(self._session, ResidentModel, resident_id, tenant_id, ResidentNotFoundError)

    # -- members ---------------------------------------------------------

    def add_family_member(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        resident_id: UUID,
        first_name: str,
        last_name: str,
        relationship: str,
        email: str,
        phone: str | None = None,
        access_level: AccessLevel | str = AccessLevel.STANDARD,
        is_primary_contact: bool = False,
        consent_given: bool = False,
        preferences: dict | None = None,
    ) -> FamilyMember:
        require(first_name, "first_name")
        require(last_name, "last_name")
        require(relationship, "relationship")
        email = validate_email(email)
        try:
            prefs = FamilyPreferences.from_dict(preferences)
        except ValueError as exc:
            raise ValidationError(f"Invalid preferences: {exc}", "preferences") from exc

        with transaction(self._session, "add_family_member"):
            resident = self._resident(resident_id, tenant_id)
            clash = self._session.execute(
                select(FamilyMemberModel.id).where(
                    FamilyMemberModel.resident_id == resident_id,
                    FamilyMemberModel.email == email,
                )
            ).scalar_one_or_none()
            if clash is not None:
                raise DuplicateEntityError("FamilyMember", "email", email)

            member = FamilyMember(
                id=uuid4(),
                tenant_id=tenant_id,
                care_home_id=resident.care_home_id,
                resident_id=resident_id,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                relationship=relationship.strip(),
                email=email,
                phone=validate_uk_phone(phone) if phone else None,
                access_level=_enum(AccessLevel, access_level, "access_level"),
                is_primary_contact=is_primary_contact,
                consent_given=consent_given,
                consent_date=self._clock.now_utc() if consent_given else None,
                preferences=prefs,
            )
            if is_primary_contact:
                self._demote_primary(resident_id, actor_id)
            self._session.add(FamilyMemberModel.from_dto(member, created_by_id=actor_id))
            self._session.flush()
            self._audit.record(
                "FAMILY_MEMBER_ADDED", "FamilyMember", member.id, tenant_id=tenant_id,
                actor_id=actor_id,
                details={
                    "resident_id": str(resident_id),
                    "access_level": member.access_level.value,
                    "consent_given": consent_given,
                },
            )

        logger.info(
            "family_member_added",
            extra={"member_id": str(member.id), "resident_id": str(resident_id)},
        )
        return member

    def _demote_primary(self, resident_id: UUID, actor_id: UUID) -> None:
        self._session.execute(
            update(FamilyMemberModel)
            .where(
                FamilyMemberModel.resident_id == resident_id,
                FamilyMemberModel.is_primary_contact.is_(True),
            )
            .values(is_primary_contact=False, updated_by_id=actor_id)
        )

    def get_family_member(self, member_id: UUID, tenant_id: UUID) -> FamilyMember:
        return self._member(member_id, tenant_id).to_dto()

    def list_family_members(self, tenant_id: UUID, resident_id: UUID) -> list[FamilyMember]:
        self._resident(resident_id, tenant_id)
        rows = self._session.execute(
            select(FamilyMemberModel)
            .where(
                FamilyMemberModel.tenant_id == tenant_id,
                FamilyMemberModel.resident_id == resident_id,
            )
            .order_by(FamilyMemberModel.is_primary_contact.desc(), FamilyMemberModel.last_name)
        ).scalars()
        return [row.to_dto() for row in rows]

    def record_consent(
        self, member_id: UUID, tenant_id: UUID, actor_id: UUID, given: bool
    ) -> FamilyMember:
        with transaction(self._session, "record_family_consent"):
            orm = self._member(member_id, tenant_id)
            if orm.consent_given != given:
                orm.consent_given = given
                orm.consent_date = self._clock.now_utc() if given else None
                orm.updated_by_id = actor_id
                self._session.flush()
                self._audit.record(
                    "FAMILY_CONSENT_RECORDED", "FamilyMember", member_id, tenant_id=tenant_id,
                    actor_id=actor_id, details={"consent_given": given},
                )
            result = orm.to_dto()
        return result

    # -- preferences -----------------------------------------------------

    def get_preferences(self, member_id: UUID, tenant_id: UUID) -> FamilyPreferences:
        return self._member(member_id, tenant_id).to_dto().preferences

    def update_preferences(
        self, member_id: UUID, tenant_id: UUID, actor_id: UUID, **changes: Any
    ) -> FamilyPreferences:
        """Merge ``changes`` into the stored preferences."""
        known = set(FamilyPreferences().to_dict())
        unknown = set(changes) - known
        if unknown:
            raise ValidationError(f"Unknown preferences: {', '.join(sorted(unknown))}", "preferences")

        with transaction(self._session, "update_family_preferences"):
            orm = self._member(member_id, tenant_id)
            current = FamilyPreferences.from_dict(orm.preferences).to_dict()
            merged = dict(current)
            for key, value in changes.items():
                if value is None:
                    continue
                if isinstance(value, (list, tuple)):
                    value = [getattr(v, "value", v) for v in value]
                merged[key] = getattr(value, "value", value)
            try:
                prefs = FamilyPreferences.from_dict(merged)
            except ValueError as exc:
                raise ValidationError(f"Invalid preferences: {exc}", "preferences") from exc
            changed = sorted(k for k, v in prefs.to_dict().items() if current[k] != v)
            if changed:
                orm.preferences = prefs.to_dict()
                orm.updated_by_id = actor_id
                self._session.flush()
                self._audit.record(
                    "FAMILY_PREFERENCES_UPDATED", "FamilyMember", member_id, tenant_id=tenant_id,
                    actor_id=actor_id, details={"fields": changed},
                )

        logger.info("family_preferences_updated", extra={"member_id": str(member_id), "fields": changed})
        return prefs

    # -- updates ---------------------------------------------------------

    def share_update(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        resident_id: UUID,
        update_type: UpdateType | str,
        title: str,
        body: str,
        visibility: Visibility | str = Visibility.ALL,
    ) -> FamilyUpdate:
        require(title, "title")
        require(body, "body")
        update_type = _enum(UpdateType, update_type, "update_type")
        visibility = _enum(Visibility, visibility, "visibility")
        if update_type is UpdateType.EMERGENCY:
            visibility = Visibility.ALL

        with transaction(self._session, "share_family_update"):
            resident = self._resident(resident_id, tenant_id)
            shared = FamilyUpdate(
                id=uuid4(),
                tenant_id=tenant_id,
                care_home_id=resident.care_home_id,
                resident_id=resident_id,
                update_type=update_type,
                title=title.strip(),
                body=body,
                visibility=visibility,
                shared_by=actor_id,
                shared_at=self._clock.now_utc(),
            )
            self._session.add(FamilyUpdateModel.from_dto(shared, created_by_id=actor_id))
            self._session.flush()
            action = (
                "FAMILY_EMERGENCY_UPDATE_SHARED"
                if update_type is UpdateType.EMERGENCY
                else "FAMILY_UPDATE_SHARED"
            )
            self._audit.record(
                action, "FamilyUpdate", shared.id, tenant_id=tenant_id, actor_id=actor_id,
                details={
                    "resident_id": str(resident_id),
                    "update_type": update_type.value,
                    "visibility": visibility.value,
                },
            )

        log = logger.warning if update_type is UpdateType.EMERGENCY else logger.info
        log(
            "family_update_shared",
            extra={"update_id": str(shared.id), "update_type": update_type.value},
        )
        return shared

    def list_recent_updates(
        self, member_id: UUID, tenant_id: UUID, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[FamilyUpdate]:
        """Newest updates this member may see.  Empty until consent is given."""
        member = self._member(member_id, tenant_id).to_dto()
        return self._visible_updates(member, limit)

    def _visible_updates(self, member: FamilyMember, limit: int) -> list[FamilyUpdate]:
        if not member.consent_given:
            logger.info("family_updates_withheld_no_consent", extra={"member_id": str(member.id)})
            return []
        rows = self._session.execute(
            select(FamilyUpdateModel)
            .where(
                FamilyUpdateModel.tenant_id == member.tenant_id,
                FamilyUpdateModel.resident_id == member.resident_id,
            )
            .order_by(FamilyUpdateModel.shared_at.desc())
        ).scalars()
        visible: list[FamilyUpdate] = []
        for row in rows:
            dto = row.to_dto()
            if dto.visible_to(member):
                visible.append(dto)
                if len(visible) >= limit:
                    break
        return visible

    # -- read models -----------------------------------------------------

    def get_dashboard(self, member_id: UUID, tenant_id: UUID) -> FamilyDashboard:
        """Everything a family member sees on landing in the portal.

        Medication counts need standard access; the outstanding bill
        balance needs full access.
        """
        member = self._member(member_id, tenant_id).to_dto()
        resident = self._resident(member.resident_id, tenant_id)
        updates = self._visible_updates(member, DEFAULT_RECENT_LIMIT)

        active_medications = None
        if member.consent_given and member.access_level.rank >= AccessLevel.STANDARD.rank:
            active_medications = self._session.execute(
                select(func.count()).select_from(MedicationRecordModel).where(
                    MedicationRecordModel.resident_id == resident.id,
                    MedicationRecordModel.status == MedicationStatus.ACTIVE.value,
                )
            ).scalar_one()

        outstanding = None
        if member.consent_given and member.access_level is AccessLevel.FULL:
            outstanding = BillingService(self._session, clock=self._clock).outstanding_balance(
                tenant_id, resident_id=resident.id
            )

        logger.info("family_dashboard_viewed", extra={"member_id": str(member_id)})
        return FamilyDashboard(
            member=member,
            resident=ResidentSnapshot(
                resident_id=resident.id,
                display_name=resident.preferred_name or resident.first_name,
                status=resident.status,
                care_level=resident.care_level,
                room_number=resident.room_number,
            ),
            recent_updates=tuple(updates),
            emergency_updates=sum(1 for u in updates if u.update_type is UpdateType.EMERGENCY),
            consent_required=not member.consent_given,
            active_medications=active_medications,
            outstanding_balance=outstanding,
        )

    def get_portal_statistics(self, tenant_id: UUID) -> PortalStatistics:
        members = [
            row.to_dto() for row in self._session.execute(
                select(FamilyMemberModel).where(FamilyMemberModel.tenant_id == tenant_id)
            ).scalars()
        ]
        updates_by_type = dict(
            self._session.execute(
                select(FamilyUpdateModel.update_type, func.count())
                .where(FamilyUpdateModel.tenant_id == tenant_id)
                .group_by(FamilyUpdateModel.update_type)
            ).all()
        )
        recent = self._session.execute(
            select(func.count()).select_from(FamilyUpdateModel).where(
                FamilyUpdateModel.tenant_id == tenant_id,
                FamilyUpdateModel.shared_at >= self._clock.now_utc() - STATISTICS_WINDOW,
            )
        ).scalar_one()
        return PortalStatistics(
            tenant_id=tenant_id,
            total_members=len(members),
            members_with_consent=sum(1 for m in members if m.consent_given),
            primary_contacts=sum(1 for m in members if m.is_primary_contact),
            residents_with_family=len({m.resident_id for m in members}),
            members_by_access_level=dict(Counter(m.access_level.value for m in members)),
            updates_by_type={t.value: updates_by_type.get(t.value, 0) for t in UpdateType},
            updates_last_30_days=recent,
        )
