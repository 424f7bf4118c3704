"""
Medication Module Service (``care_modules.medication.service``).

Responsibility
--------------
Prescriptions, the dose schedule (MAR chart), recording administrations,
PRN interval enforcement, missed-dose sweeps, adherence metrics and
upcoming-dose reminders.

Architecture position
---------------------
**Modules layer** -- owns the transaction boundary.  Every time-dependent
decision reads the injected ``Clock``.

Invariants enforced
-------------------
* A dose slot (medication, scheduled_at) exists at most once.
* A dose is recorded exactly once: pending -> one outcome.
* A PRN dose is refused until ``min_interval_hours`` (default 4) has
  passed since the last administered PRN dose.
* Only active prescriptions are scheduled or given.

Failure modes
-------------
* ``PRNIntervalError`` (422) -> PRN dose too soon.
* ``InvalidTransitionError`` (409) -> re-recording a dose, scheduling a
  discontinued prescription.
* ``BusinessRuleError`` (422) -> prescribing a known allergen, or for a
  resident who is no longer in the home.

Audit relevance
---------------
Prescribe, discontinue, every recorded dose and every missed-dose sweep
are audited.  Controlled drugs carry ``is_controlled`` in audit details.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.exceptions import (
    BusinessRuleError,
    DoseNotFoundError,
    InvalidTransitionError,
    MedicationNotFoundError,
    PRNIntervalError,
    ResidentNotFoundError,
    ValidationError,
)
from care_kernel.logging_config import get_logger
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import get_scoped, transaction
from care_modules.medication.helpers import (
    adherence_rate,
    adherence_recommendations,
    concern_level,
    local_date,
    schedule_slots,
    trend_direction,
)
from care_modules.medication.models import (
    AdherenceMetrics,
    DoseReminder,
    DoseStatus,
    MedicationFrequency,
    MedicationRecord,
    MedicationStatus,
    PRNCheck,
    ScheduledDose,
)
from care_modules.medication.orm import MedicationRecordModel, ScheduledDoseModel
from care_modules.medication.workflows import DOSE_WORKFLOW, MEDICATION_WORKFLOW
from care_modules.residents.models import ResidentStatus
from care_modules.residents.orm import ResidentModel

logger = get_logger("modules.medication.service")

DEFAULT_SCHEDULE_DAYS = 28


class MedicationService:
    """Prescriptions and the MAR chart for one tenant at a time."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit: AuditService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._audit = audit or AuditService(session, clock=self._clock)

    def _get(self, medication_id: UUID, tenant_id: UUID) -> MedicationRecordModel:
        return get_scoped(
            self._session, MedicationRecordModel, medication_id, tenant_id, MedicationNotFoundError
        )

    def _get_dose(self, dose_id: UUID, tenant_id: UUID) -> ScheduledDoseModel:
        return get_scoped(self._session, ScheduledDoseModel, dose_id, tenant_id, DoseNotFoundError)

    # -------------------------------------------------------------------------
    # Prescriptions
    # -------------------------------------------------------------------------

    def prescribe(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        resident_id: UUID,
        medication_name: str,
        dosage: str,
        route: str,
        frequency: MedicationFrequency,
        start_date: date,
        prescriber: str,
        end_date: date | None = None,
        min_interval_hours: int | None = None,
        is_controlled: bool = False,
        instructions: str | None = None,
    ) -> MedicationRecord:
        for value, name in ((medication_name, "medication_name"), (dosage, "dosage"),
                            (route, "route"), (prescriber, "prescriber")):
            if not value or not str(value).strip():
                raise ValidationError(f"{name} is required", name)
        try:
            record = MedicationRecord(
                id=uuid4(),
                tenant_id=tenant_id,
                resident_id=resident_id,
                medication_name=medication_name.strip(),
                dosage=dosage.strip(),
                route=route.strip(),
                frequency=MedicationFrequency(frequency),
                start_date=start_date,
                end_date=end_date,
                prescriber=prescriber.strip(),
                min_interval_hours=min_interval_hours,
                is_controlled=is_controlled,
                instructions=instructions,
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        with transaction(self._session, "prescribe_medication"):
            resident = get_scoped(
                self._session, ResidentModel, resident_id, tenant_id, ResidentNotFoundError
            )
            if resident.status in (ResidentStatus.DISCHARGED.value, ResidentStatus.DECEASED.value):
                raise BusinessRuleError(
                    f"Resident {resident_id} is {resident.status}; cannot prescribe"
                )
            name = record.medication_name.lower()
            for allergen in resident.allergies or ():
                if allergen and allergen.strip().lower() in name:
                    raise BusinessRuleError(
                        f"Resident has a recorded allergy to {allergen!r}"
                    )
            orm = MedicationRecordModel.from_dto(record, created_by_id=actor_id)
            orm.care_home_id = resident.care_home_id
            self._session.add(orm)
            self._session.flush()
            self._audit.record(
                "MEDICATION_PRESCRIBED", "Medication", orm.id, tenant_id=tenant_id,
                actor_id=actor_id,
                details={"medication_name": record.medication_name,
                         "frequency": record.frequency.value,
                         "is_controlled": record.is_controlled},
            )
            result = orm.to_dto()

        logger.info(
            "medication_prescribed",
            extra={"medication_id": str(result.id), "frequency": result.frequency.value},
        )
        return result

    def get_medication(self, medication_id: UUID, tenant_id: UUID) -> MedicationRecord:
        return self._get(medication_id, tenant_id).to_dto()

    def list_medications(
        self,
        tenant_id: UUID,
        resident_id: UUID | None = None,
        status: MedicationStatus | None = None,
    ) -> list[MedicationRecord]:
        stmt = select(MedicationRecordModel).where(MedicationRecordModel.tenant_id == tenant_id)
        if resident_id is not None:
            stmt = stmt.where(MedicationRecordModel.resident_id == resident_id)
        if status is not None:
            stmt = stmt.where(MedicationRecordModel.status == MedicationStatus(status).value)
        rows = self._session.execute(
            stmt.order_by(MedicationRecordModel.medication_name)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def _change_status(self, medication_id: UUID, tenant_id: UUID, actor_id: UUID,
                       action: str, reason: str | None = None) -> MedicationRecord:
        now = self._clock.now()
        with transaction(self._session, f"{action}_medication"):
            orm = self._get(medication_id, tenant_id)
            orm.status = MEDICATION_WORKFLOW.transition_for(orm.status, action).to_state
            orm.updated_by_id = actor_id
            removed = 0
            if action == "discontinue":
                orm.discontinued_reason = reason
                today = local_date(now)
                orm.end_date = min(orm.end_date or today, today)
                future = self._session.execute(
                    select(ScheduledDoseModel).where(
                        ScheduledDoseModel.medication_id == orm.id,
                        ScheduledDoseModel.status == DoseStatus.PENDING.value,
                        ScheduledDoseModel.scheduled_at > now,
                    )
                ).scalars().all()
                for dose in future:
                    self._session.delete(dose)
                removed = len(future)
            self._session.flush()
            self._audit.record(
                f"MEDICATION_{action.upper()}", "Medication", orm.id, tenant_id=tenant_id,
                actor_id=actor_id,
                details={"reason": reason, "pending_doses_removed": removed,
                         "is_controlled": orm.is_controlled},
            )
            result = orm.to_dto()
        logger.info("medication_status_changed",
                    extra={"medication_id": str(medication_id), "status": result.status.value,
                           "pending_doses_removed": removed})
        return result

    def discontinue(
        self, medication_id: UUID, tenant_id: UUID, actor_id: UUID, reason: str | None = None
    ) -> MedicationRecord:
        """Stop a prescription and drop its future pending doses."""
        return self._change_status(medication_id, tenant_id, actor_id, "discontinue", reason)

    def suspend(self, medication_id: UUID, tenant_id: UUID, actor_id: UUID,
                reason: str | None = None) -> MedicationRecord:
        return self._change_status(medication_id, tenant_id, actor_id, "suspend", reason)

    def resume(self, medication_id: UUID, tenant_id: UUID, actor_id: UUID) -> MedicationRecord:
        return self._change_status(medication_id, tenant_id, actor_id, "resume")

    # -------------------------------------------------------------------------
    # Schedule
    # -------------------------------------------------------------------------

    def generate_schedule(
        self,
        medication_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        start_date: date | None = None,
        duration_days: int = DEFAULT_SCHEDULE_DAYS,
    ) -> list[ScheduledDose]:
        """
        Persist dose slots that do not exist yet and return only the new ones.

        Re-running over an already scheduled window returns an empty list.
        A STAT prescription gets its single dose on the first run only.
        """
        if duration_days <= 0:
            raise ValidationError("duration_days must be positive", "duration_days")
        now = self._clock.now()
        with transaction(self._session, "generate_schedule"):
            med = self._get(medication_id, tenant_id)
            if med.status != MedicationStatus.ACTIVE.value:
                raise InvalidTransitionError("medication", med.status, "schedule")
            slots = schedule_slots(
                MedicationFrequency(med.frequency),
                anchor=med.start_date,
                start_date=start_date or local_date(now),
                duration_days=duration_days,
                end_date=med.end_date,
                now=now,
            )
            existing = set(
                self._session.execute(
                    select(ScheduledDoseModel.scheduled_at).where(
                        ScheduledDoseModel.medication_id == med.id
                    )
                ).scalars().all()
            )
            if med.frequency == MedicationFrequency.STAT.value and existing:
                # A one-off dose is booked once, however often this runs
                slots = []
            created: list[ScheduledDoseModel] = []
            for slot in slots:
                if slot in existing:
                    continue
                dose = ScheduledDoseModel(
                    id=uuid4(),
                    tenant_id=tenant_id,
                    care_home_id=med.care_home_id,
                    medication_id=med.id,
                    resident_id=med.resident_id,
                    scheduled_at=slot,
                    status=DOSE_WORKFLOW.initial_state,
                    is_prn=False,
                    created_by_id=actor_id,
                )
                self._session.add(dose)
                created.append(dose)
            self._session.flush()
            result = [d.to_dto() for d in created]

        if not slots and med.frequency == MedicationFrequency.PRN.value:
            logger.info("prn_medication_not_scheduled", extra={"medication_id": str(medication_id)})
        logger.info(
            "medication_schedule_generated",
            extra={"medication_id": str(medication_id), "slots": len(slots), "doses_created": len(result)},
        )
        return result

    def list_doses(
        self,
        tenant_id: UUID,
        resident_id: UUID | None = None,
        medication_id: UUID | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        status: DoseStatus | None = None,
    ) -> list[ScheduledDose]:
        stmt = select(ScheduledDoseModel).where(ScheduledDoseModel.tenant_id == tenant_id)
        if resident_id is not None:
            stmt = stmt.where(ScheduledDoseModel.resident_id == resident_id)
        if medication_id is not None:
            stmt = stmt.where(ScheduledDoseModel.medication_id == medication_id)
        if since is not None:
            stmt = stmt.where(ScheduledDoseModel.scheduled_at >= since)
        if until is not None:
            stmt = stmt.where(ScheduledDoseModel.scheduled_at <= until)
        if status is not None:
            stmt = stmt.where(ScheduledDoseModel.status == DoseStatus(status).value)
        rows = self._session.execute(stmt.order_by(ScheduledDoseModel.scheduled_at)).scalars().all()
        return [r.to_dto() for r in rows]

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def record_administration(
        self,
        dose_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        outcome: DoseStatus,
        notes: str | None = None,
    ) -> ScheduledDose:
        """Record the outcome of a pending dose.  A dose is recorded once."""
        outcome = DoseStatus(outcome)
        if outcome == DoseStatus.PENDING:
            raise ValidationError("outcome must not be pending", "outcome")
        with transaction(self._session, "record_administration"):
            dose = self._get_dose(dose_id, tenant_id)
            dose.status = DOSE_WORKFLOW.transition_for(dose.status, outcome.value).to_state
            if outcome == DoseStatus.ADMINISTERED:
                dose.administered_at = self._clock.now()
                dose.administered_by = actor_id
            dose.notes = notes
            dose.updated_by_id = actor_id
            self._session.flush()
            self._audit.record(
                "DOSE_RECORDED", "ScheduledDose", dose.id, tenant_id=tenant_id,
                actor_id=actor_id,
                details={"medication_id": str(dose.medication_id), "outcome": outcome.value},
            )
            result = dose.to_dto()
        logger.info("dose_recorded", extra={"dose_id": str(dose_id), "outcome": outcome.value})
        return result

    def _last_prn(self, medication_id: UUID) -> datetime | None:
        return self._session.execute(
            select(ScheduledDoseModel.administered_at)
            .where(
                ScheduledDoseModel.medication_id == medication_id,
                ScheduledDoseModel.status == DoseStatus.ADMINISTERED.value,
            )
            .order_by(ScheduledDoseModel.administered_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def can_administer_prn(
        self, medication_id: UUID, tenant_id: UUID, at: datetime | None = None
    ) -> PRNCheck:
        at = at or self._clock.now()
        med = self._get(medication_id, tenant_id).to_dto()
        if not med.is_prn:
            raise ValidationError("This is not a PRN medication", "frequency")
        if med.status != MedicationStatus.ACTIVE:
            return PRNCheck(can_administer=False, reason=f"Medication is {med.status.value}")
        last = self._last_prn(med.id)
        if last is None:
            return PRNCheck(can_administer=True)
        next_available = last + timedelta(hours=med.prn_interval_hours)
        if at < next_available:
            return PRNCheck(
                can_administer=False,
                reason=(
                    f"Minimum {med.prn_interval_hours} hour interval not met. "
                    f"Last dose: {last.isoformat()}"
                ),
                next_available_time=next_available,
                last_administered=last,
            )
        return PRNCheck(can_administer=True, last_administered=last)

    def record_prn_administration(
        self,
        medication_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        at: datetime | None = None,
        notes: str | None = None,
    ) -> ScheduledDose:
        at = at or self._clock.now()
        check = self.can_administer_prn(medication_id, tenant_id, at)
        if not check.can_administer:
            if check.next_available_time is not None:
                raise PRNIntervalError(medication_id, check.next_available_time.isoformat())
            raise BusinessRuleError(check.reason or "PRN medication cannot be given")

        with transaction(self._session, "record_prn_administration"):
            med = self._get(medication_id, tenant_id)
            dose = ScheduledDoseModel(
                id=uuid4(),
                tenant_id=tenant_id,
                care_home_id=med.care_home_id,
                medication_id=med.id,
                resident_id=med.resident_id,
                scheduled_at=at,
                status=DoseStatus.ADMINISTERED.value,
                is_prn=True,
                administered_at=at,
                administered_by=actor_id,
                notes=notes,
                created_by_id=actor_id,
            )
            self._session.add(dose)
            self._session.flush()
            self._audit.record(
                "PRN_DOSE_RECORDED", "ScheduledDose", dose.id, tenant_id=tenant_id,
                actor_id=actor_id,
                details={"medication_id": str(med.id), "is_controlled": med.is_controlled},
            )
            result = dose.to_dto()
        logger.info("prn_dose_recorded", extra={"medication_id": str(medication_id)})
        return result

    def mark_missed_doses(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        as_of: datetime | None = None,
        grace_minutes: int = 60,
    ) -> list[ScheduledDose]:
        """Mark pending doses older than ``grace_minutes`` as missed."""
        cutoff = (as_of or self._clock.now()) - timedelta(minutes=grace_minutes)
        with transaction(self._session, "mark_missed_doses"):
            doses = self._session.execute(
                select(ScheduledDoseModel).where(
                    ScheduledDoseModel.tenant_id == tenant_id,
                    ScheduledDoseModel.status == DoseStatus.PENDING.value,
                    ScheduledDoseModel.scheduled_at < cutoff,
                ).order_by(ScheduledDoseModel.scheduled_at)
            ).scalars().all()
            for dose in doses:
                dose.status = DOSE_WORKFLOW.transition_for(dose.status, "missed").to_state
                dose.updated_by_id = actor_id
            self._session.flush()
            if doses:
                self._audit.record(
                    "DOSES_MARKED_MISSED", "ScheduledDose", None, tenant_id=tenant_id,
                    actor_id=actor_id,
                    details={"count": len(doses), "dose_ids": [str(d.id) for d in doses]},
                )
            result = [d.to_dto() for d in doses]
        if result:
            logger.warning("doses_marked_missed",
                           extra={"count": len(result), "cutoff": cutoff.isoformat()})
        return result

    # -------------------------------------------------------------------------
    # Adherence and reminders
    # -------------------------------------------------------------------------

    def _outcome_counts(
        self, resident_id: UUID, medication_id: UUID | None, start: datetime, end: datetime
    ) -> dict[str, int]:
        conditions = [
            ScheduledDoseModel.resident_id == resident_id,
            ScheduledDoseModel.is_prn.is_(False),
            ScheduledDoseModel.scheduled_at >= start,
            ScheduledDoseModel.scheduled_at < end,
        ]
        if medication_id is not None:
            conditions.append(ScheduledDoseModel.medication_id == medication_id)
        counts = {s.value: 0 for s in DoseStatus}
        for status in self._session.execute(
            select(ScheduledDoseModel.status).where(and_(*conditions))
        ).scalars():
            counts[status] += 1
        return counts

    def calculate_adherence(
        self,
        resident_id: UUID,
        tenant_id: UUID,
        period_days: int = 30,
        medication_id: UUID | None = None,
        as_of: datetime | None = None,
    ) -> AdherenceMetrics:
        """
        Adherence over the last ``period_days``.

        rate = administered / recorded (non-pending) scheduled doses x 100,
        rounded.  PRN doses are excluded.  Trend compares with the
        preceding window of the same length.
        """
        if period_days <= 0:
            raise ValidationError("period_days must be positive", "period_days")
        get_scoped(self._session, ResidentModel, resident_id, tenant_id, ResidentNotFoundError)
        if medication_id is not None:
            self._get(medication_id, tenant_id)
        end = as_of or self._clock.now()
        start = end - timedelta(days=period_days)
        current = self._outcome_counts(resident_id, medication_id, start, end)
        previous = self._outcome_counts(
            resident_id, medication_id, start - timedelta(days=period_days), start
        )

        def recorded(counts: dict[str, int]) -> int:
            return sum(v for k, v in counts.items() if k != DoseStatus.PENDING.value)

        total = recorded(current)
        rate = adherence_rate(current[DoseStatus.ADMINISTERED.value], total)
        prev_total = recorded(previous)
        prev_rate = (
            adherence_rate(previous[DoseStatus.ADMINISTERED.value], prev_total)
            if prev_total else None
        )
        trend = trend_direction(rate, prev_rate)
        missed = current[DoseStatus.MISSED.value]
        refused = current[DoseStatus.REFUSED.value]
        metrics = AdherenceMetrics(
            resident_id=resident_id,
            medication_id=medication_id,
            period_days=period_days,
            total_doses=total,
            administered=current[DoseStatus.ADMINISTERED.value],
            missed=missed,
            refused=refused,
            omitted=current[DoseStatus.OMITTED.value],
            adherence_rate=rate,
            trend=trend,
            concern_level=concern_level(rate),
            recommendations=tuple(adherence_recommendations(rate, missed, refused, trend)),
        )
        logger.info(
            "adherence_calculated",
            extra={"resident_id": str(resident_id), "adherence_rate": rate,
                   "concern_level": metrics.concern_level.value},
        )
        return metrics

    def due_reminders(
        self, tenant_id: UUID, window_minutes: int = 30, mark_sent: bool = True
    ) -> list[DoseReminder]:
        """Pending doses due within the window that have not had a reminder yet."""
        now = self._clock.now()
        horizon = now + timedelta(minutes=window_minutes)
        with transaction(self._session, "due_reminders"):
            rows = self._session.execute(
                select(ScheduledDoseModel, MedicationRecordModel)
                .join(MedicationRecordModel,
                      MedicationRecordModel.id == ScheduledDoseModel.medication_id)
                .where(
                    ScheduledDoseModel.tenant_id == tenant_id,
                    ScheduledDoseModel.status == DoseStatus.PENDING.value,
                    ScheduledDoseModel.reminder_sent_at.is_(None),
                    ScheduledDoseModel.scheduled_at >= now,
                    ScheduledDoseModel.scheduled_at <= horizon,
                )
                .order_by(ScheduledDoseModel.scheduled_at)
            ).all()
            reminders = []
            for dose, med in rows:
                reminders.append(
                    DoseReminder(
                        dose_id=dose.id,
                        medication_id=med.id,
                        resident_id=dose.resident_id,
                        medication_name=med.medication_name,
                        dosage=med.dosage,
                        scheduled_at=dose.scheduled_at,
                        minutes_until=int((dose.scheduled_at - now).total_seconds() // 60),
                    )
                )
                if mark_sent:
                    dose.reminder_sent_at = now
            self._session.flush()
        if reminders:
            logger.info("dose_reminders_due", extra={"count": len(reminders)})
        return reminders
