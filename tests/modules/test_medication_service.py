"""
Tests for MedicationService and the medication helpers.

Validates:
- Prescribing rules (required fields, allergies, discharged residents)
- Schedule generation per frequency, idempotent over the same window
- Each dose is recorded once; missed-dose sweeps respect the grace period
- PRN minimum interval enforcement
- Adherence rate, concern level, trend and recommendations
- Upcoming-dose reminders are sent once
"""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from care_kernel.exceptions import (
    BusinessRuleError,
    InvalidTransitionError,
    PRNIntervalError,
    TenantIsolationError,
    ValidationError,
)
from care_kernel.services.audit_service import AuditService
from care_modules.medication.helpers import (
    adherence_rate,
    concern_level,
    local_date,
    schedule_slots,
    trend_direction,
)
from care_modules.medication.models import (
    ConcernLevel,
    DoseStatus,
    MedicationFrequency,
    MedicationStatus,
    Trend,
)
from care_modules.medication.service import MedicationService


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def uk(*args):
    return datetime(*args, tzinfo=ZoneInfo("Europe/London"))


@pytest.fixture
def medication_service(session, deterministic_clock):
    return MedicationService(session, clock=deterministic_clock)


@pytest.fixture
def prescribe(medication_service, tenant_id, test_actor_id, resident):
    def _prescribe(**overrides):
        values = dict(
            resident_id=resident.id,
            medication_name="Amlodipine",
            dosage="5mg",
            route="oral",
            frequency=MedicationFrequency.BD,
            start_date=date(2025, 6, 1),
            prescriber="Dr Okafor",
        )
        values.update(overrides)
        return medication_service.prescribe(tenant_id, test_actor_id, **values)
    return _prescribe


class TestScheduleHelpers:
    def test_bd_slots(self):
        slots = schedule_slots(MedicationFrequency.BD, anchor=date(2025, 6, 1),
                               start_date=date(2025, 6, 2), duration_days=2)
        assert slots == [uk(2025, 6, 2, 8), uk(2025, 6, 2, 20), uk(2025, 6, 3, 8), uk(2025, 6, 3, 20)]
        assert slots[0] == utc(2025, 6, 2, 7)
        assert all(s.tzinfo == timezone.utc for s in slots)

    def test_slots_stop_at_end_date(self):
        slots = schedule_slots(MedicationFrequency.OD, anchor=date(2025, 6, 1),
                               start_date=date(2025, 6, 1), duration_days=10,
                               end_date=date(2025, 6, 3))
        assert len(slots) == 3

    def test_nothing_before_anchor(self):
        slots = schedule_slots(MedicationFrequency.OD, anchor=date(2025, 6, 5),
                               start_date=date(2025, 6, 1), duration_days=7)
        assert slots[0] == uk(2025, 6, 5, 8)
        assert len(slots) == 3

    def test_weekly_follows_anchor_weekday(self):
        slots = schedule_slots(MedicationFrequency.WEEKLY, anchor=date(2025, 6, 2),
                               start_date=date(2025, 6, 2), duration_days=14)
        assert [s.date() for s in slots] == [date(2025, 6, 2), date(2025, 6, 9)]

    def test_monthly_clamps_to_month_end(self):
        slots = schedule_slots(MedicationFrequency.MONTHLY, anchor=date(2025, 1, 31),
                               start_date=date(2025, 2, 1), duration_days=28)
        assert slots == [utc(2025, 2, 28, 8)]

    def test_prn_and_stat(self):
        now = utc(2025, 6, 2, 9)
        assert schedule_slots(MedicationFrequency.PRN, date(2025, 6, 1), date(2025, 6, 1), 7) == []
        assert schedule_slots(MedicationFrequency.STAT, date(2025, 6, 1), date(2025, 6, 1), 7,
                              now=now) == [now]

    def test_rounds_follow_uk_clock_change(self):
        winter = schedule_slots(MedicationFrequency.OD, anchor=date(2025, 3, 29),
                                start_date=date(2025, 3, 29), duration_days=2)
        assert winter == [utc(2025, 3, 29, 8), utc(2025, 3, 30, 7)]

    def test_local_date_is_uk_date(self):
        assert local_date(utc(2025, 6, 2, 23, 30)) == date(2025, 6, 3)
        assert local_date(utc(2025, 1, 2, 23, 30)) == date(2025, 1, 2)


class TestAdherenceHelpers:
    def test_rate(self):
        assert adherence_rate(9, 10) == 90
        assert adherence_rate(2, 3) == 67
        assert adherence_rate(0, 0) == 0

    @pytest.mark.parametrize("rate,level", [
        (100, ConcernLevel.NONE), (90, ConcernLevel.NONE), (89, ConcernLevel.LOW),
        (75, ConcernLevel.LOW), (60, ConcernLevel.MEDIUM), (59, ConcernLevel.HIGH),
    ])
    def test_concern_level(self, rate, level):
        assert concern_level(rate) == level

    def test_trend(self):
        assert trend_direction(80, None) == Trend.STABLE
        assert trend_direction(80, 74) == Trend.IMPROVING
        assert trend_direction(80, 85) == Trend.STABLE
        assert trend_direction(80, 86) == Trend.DECLINING


class TestPrescribing:
    def test_prescribe_is_audited(self, prescribe, session, tenant_id, resident, care_home_id):
        med = prescribe(is_controlled=True)
        assert med.status == MedicationStatus.ACTIVE
        assert med.resident_id == resident.id
        events = AuditService(session).list_events(tenant_id, entity_type="Medication")
        assert events[0].action == "MEDICATION_PRESCRIBED"
        assert events[0].details["is_controlled"] is True

    def test_required_fields(self, prescribe):
        with pytest.raises(ValidationError):
            prescribe(dosage=" ")

    def test_end_before_start_rejected(self, prescribe):
        with pytest.raises(ValidationError):
            prescribe(end_date=date(2025, 5, 1))

    def test_allergen_refused(self, prescribe, make_resident):
        allergic = make_resident(nhs_number="4010232137", allergies=["Penicillin"])
        with pytest.raises(BusinessRuleError):
            prescribe(resident_id=allergic.id, medication_name="Penicillin V")

    def test_discharged_resident_refused(self, prescribe, resident, resident_service,
                                         tenant_id, test_actor_id):
        resident_service.discharge_resident(resident.id, tenant_id, test_actor_id, date(2025, 6, 1))
        with pytest.raises(BusinessRuleError):
            prescribe()

    def test_other_tenant_cannot_read(self, prescribe, medication_service, other_tenant_id):
        med = prescribe()
        with pytest.raises(TenantIsolationError):
            medication_service.get_medication(med.id, other_tenant_id)

    def test_list_by_status(self, prescribe, medication_service, tenant_id, test_actor_id, resident):
        prescribe()
        stopped = prescribe(medication_name="Simvastatin", frequency=MedicationFrequency.OD)
        medication_service.discontinue(stopped.id, tenant_id, test_actor_id, "Side effects")
        active = medication_service.list_medications(tenant_id, resident_id=resident.id,
                                                     status=MedicationStatus.ACTIVE)
        assert [m.medication_name for m in active] == ["Amlodipine"]


class TestSchedule:
    def test_generate_four_weeks(self, prescribe, medication_service, tenant_id, test_actor_id):
        med = prescribe()
        doses = medication_service.generate_schedule(med.id, tenant_id, test_actor_id)
        assert len(doses) == 56
        assert doses[0].scheduled_at == uk(2025, 6, 2, 8)
        assert all(d.status == DoseStatus.PENDING for d in doses)

    def test_regeneration_creates_nothing_new(self, prescribe, medication_service, tenant_id,
                                              test_actor_id):
        med = prescribe()
        medication_service.generate_schedule(med.id, tenant_id, test_actor_id, duration_days=7)
        again = medication_service.generate_schedule(med.id, tenant_id, test_actor_id, duration_days=8)
        assert [d.scheduled_at for d in again] == [uk(2025, 6, 9, 8), uk(2025, 6, 9, 20)]
        assert len(medication_service.list_doses(tenant_id, medication_id=med.id)) == 16

    def test_stat_booked_once(self, prescribe, medication_service, tenant_id, test_actor_id,
                              deterministic_clock, captured_logs):
        med = prescribe(frequency=MedicationFrequency.STAT, medication_name="Adrenaline")
        first = medication_service.generate_schedule(med.id, tenant_id, test_actor_id)
        assert [d.scheduled_at for d in first] == [utc(2025, 6, 2, 9)]
        deterministic_clock.advance(timedelta(minutes=30))
        assert medication_service.generate_schedule(med.id, tenant_id, test_actor_id) == []
        assert len(medication_service.list_doses(tenant_id, medication_id=med.id)) == 1
        logged = [r for r in captured_logs() if r["message"] == "medication_schedule_generated"]
        assert [r["doses_created"] for r in logged] == [1, 0]

    def test_prn_has_no_schedule(self, prescribe, medication_service, tenant_id, test_actor_id):
        med = prescribe(frequency=MedicationFrequency.PRN, medication_name="Paracetamol")
        assert medication_service.generate_schedule(med.id, tenant_id, test_actor_id) == []

    def test_invalid_duration(self, prescribe, medication_service, tenant_id, test_actor_id):
        med = prescribe()
        with pytest.raises(ValidationError):
            medication_service.generate_schedule(med.id, tenant_id, test_actor_id, duration_days=0)

    def test_discontinue_drops_future_doses(self, prescribe, medication_service, tenant_id,
                                            test_actor_id):
        med = prescribe()
        medication_service.generate_schedule(med.id, tenant_id, test_actor_id)
        stopped = medication_service.discontinue(med.id, tenant_id, test_actor_id, "Reviewed by GP")
        assert stopped.status == MedicationStatus.DISCONTINUED
        assert stopped.end_date == date(2025, 6, 2)
        remaining = medication_service.list_doses(tenant_id, medication_id=med.id)
        assert [d.scheduled_at for d in remaining] == [uk(2025, 6, 2, 8)]
        with pytest.raises(InvalidTransitionError):
            medication_service.generate_schedule(med.id, tenant_id, test_actor_id)

    def test_suspend_and_resume(self, prescribe, medication_service, tenant_id, test_actor_id):
        med = prescribe()
        assert medication_service.suspend(med.id, tenant_id, test_actor_id).status == MedicationStatus.SUSPENDED
        with pytest.raises(InvalidTransitionError):
            medication_service.generate_schedule(med.id, tenant_id, test_actor_id)
        assert medication_service.resume(med.id, tenant_id, test_actor_id).status == MedicationStatus.ACTIVE


class TestAdministration:
    def test_record_once(self, prescribe, medication_service, tenant_id, test_actor_id):
        med = prescribe()
        dose = medication_service.generate_schedule(med.id, tenant_id, test_actor_id, duration_days=1)[0]
        given = medication_service.record_administration(
            dose.id, tenant_id, test_actor_id, DoseStatus.ADMINISTERED, notes="Taken with water"
        )
        assert given.status == DoseStatus.ADMINISTERED
        assert given.administered_at == utc(2025, 6, 2, 9)
        assert given.administered_by == test_actor_id
        with pytest.raises(InvalidTransitionError):
            medication_service.record_administration(dose.id, tenant_id, test_actor_id, DoseStatus.REFUSED)

    def test_pending_is_not_an_outcome(self, prescribe, medication_service, tenant_id, test_actor_id):
        med = prescribe()
        dose = medication_service.generate_schedule(med.id, tenant_id, test_actor_id, duration_days=1)[0]
        with pytest.raises(ValidationError):
            medication_service.record_administration(dose.id, tenant_id, test_actor_id, DoseStatus.PENDING)

    def test_refusal_records_no_administration_time(self, prescribe, medication_service, tenant_id,
                                                    test_actor_id):
        med = prescribe()
        dose = medication_service.generate_schedule(med.id, tenant_id, test_actor_id, duration_days=1)[0]
        refused = medication_service.record_administration(dose.id, tenant_id, test_actor_id, "refused")
        assert refused.status == DoseStatus.REFUSED
        assert refused.administered_at is None

    def test_missed_sweep_respects_grace(self, prescribe, medication_service, tenant_id, test_actor_id,
                                         captured_logs):
        med = prescribe()
        medication_service.generate_schedule(med.id, tenant_id, test_actor_id, duration_days=7)
        assert medication_service.mark_missed_doses(tenant_id, test_actor_id, as_of=uk(2025, 6, 2, 8, 45)) == []
        missed = medication_service.mark_missed_doses(tenant_id, test_actor_id, as_of=utc(2025, 6, 3, 10))
        assert [d.scheduled_at for d in missed] == [
            uk(2025, 6, 2, 8), uk(2025, 6, 2, 20), uk(2025, 6, 3, 8),
        ]
        assert all(d.status == DoseStatus.MISSED for d in missed)
        assert any(r["message"] == "doses_marked_missed" and r["count"] == 3 for r in captured_logs())


class TestPRN:
    @pytest.fixture
    def prn(self, prescribe):
        return prescribe(frequency=MedicationFrequency.PRN, medication_name="Paracetamol", dosage="1g")

    def test_first_dose_allowed(self, prn, medication_service, tenant_id):
        assert medication_service.can_administer_prn(prn.id, tenant_id).can_administer

    def test_default_four_hour_interval(self, prn, medication_service, tenant_id, test_actor_id):
        medication_service.record_prn_administration(prn.id, tenant_id, test_actor_id)
        check = medication_service.can_administer_prn(prn.id, tenant_id, at=utc(2025, 6, 2, 11))
        assert not check.can_administer
        assert check.next_available_time == utc(2025, 6, 2, 13)
        assert check.last_administered == utc(2025, 6, 2, 9)
        with pytest.raises(PRNIntervalError):
            medication_service.record_prn_administration(prn.id, tenant_id, test_actor_id,
                                                         at=utc(2025, 6, 2, 12, 59))
        later = medication_service.record_prn_administration(prn.id, tenant_id, test_actor_id,
                                                             at=utc(2025, 6, 2, 13))
        assert later.status == DoseStatus.ADMINISTERED

    def test_custom_interval(self, prescribe, medication_service, tenant_id, test_actor_id):
        med = prescribe(frequency=MedicationFrequency.PRN, medication_name="Lorazepam",
                        min_interval_hours=6, is_controlled=True)
        medication_service.record_prn_administration(med.id, tenant_id, test_actor_id)
        assert not medication_service.can_administer_prn(med.id, tenant_id, at=utc(2025, 6, 2, 14)).can_administer
        assert medication_service.can_administer_prn(med.id, tenant_id, at=utc(2025, 6, 2, 15)).can_administer

    def test_regular_medication_is_not_prn(self, prescribe, medication_service, tenant_id):
        med = prescribe()
        with pytest.raises(ValidationError):
            medication_service.can_administer_prn(med.id, tenant_id)

    def test_suspended_prn_cannot_be_given(self, prn, medication_service, tenant_id, test_actor_id):
        medication_service.suspend(prn.id, tenant_id, test_actor_id)
        assert not medication_service.can_administer_prn(prn.id, tenant_id).can_administer
        with pytest.raises(BusinessRuleError):
            medication_service.record_prn_administration(prn.id, tenant_id, test_actor_id)


class TestAdherence:
    @pytest.fixture
    def daily(self, prescribe):
        return prescribe(frequency=MedicationFrequency.OD, start_date=date(2025, 4, 1))

    def _record(self, service, tenant_id, actor_id, med, start, outcomes):
        doses = service.generate_schedule(med.id, tenant_id, actor_id, start_date=start,
                                          duration_days=len(outcomes))
        for dose, outcome in zip(doses, outcomes):
            service.record_administration(dose.id, tenant_id, actor_id, outcome)

    def test_good_adherence(self, daily, medication_service, tenant_id, test_actor_id, resident):
        self._record(medication_service, tenant_id, test_actor_id, daily, date(2025, 5, 23),
                     ["administered"] * 9 + ["refused"])
        metrics = medication_service.calculate_adherence(resident.id, tenant_id)
        assert metrics.total_doses == 10
        assert metrics.administered == 9
        assert metrics.refused == 1
        assert metrics.adherence_rate == 90
        assert metrics.concern_level == ConcernLevel.NONE
        assert metrics.trend == Trend.STABLE
        assert metrics.recommendations == ()

    def test_declining_adherence(self, daily, medication_service, tenant_id, test_actor_id, resident):
        self._record(medication_service, tenant_id, test_actor_id, daily, date(2025, 4, 20),
                     ["administered"] * 10)
        self._record(medication_service, tenant_id, test_actor_id, daily, date(2025, 5, 23),
                     ["administered"] * 6 + ["missed"] * 4)
        metrics = medication_service.calculate_adherence(resident.id, tenant_id, medication_id=daily.id)
        assert metrics.adherence_rate == 60
        assert metrics.missed == 4
        assert metrics.concern_level == ConcernLevel.MEDIUM
        assert metrics.trend == Trend.DECLINING
        assert any(r.startswith("URGENT") for r in metrics.recommendations)
        assert any("missed doses" in r for r in metrics.recommendations)

    def test_prn_doses_excluded(self, prescribe, medication_service, tenant_id, test_actor_id, resident):
        prn = prescribe(frequency=MedicationFrequency.PRN, medication_name="Paracetamol")
        medication_service.record_prn_administration(prn.id, tenant_id, test_actor_id,
                                                     at=utc(2025, 6, 1, 10))
        metrics = medication_service.calculate_adherence(resident.id, tenant_id)
        assert metrics.total_doses == 0
        assert metrics.adherence_rate == 0

    def test_period_must_be_positive(self, medication_service, tenant_id, resident):
        with pytest.raises(ValidationError):
            medication_service.calculate_adherence(resident.id, tenant_id, period_days=0)


class TestReminders:
    def test_reminder_sent_once(self, prescribe, medication_service, tenant_id, test_actor_id,
                                deterministic_clock):
        med = prescribe()
        medication_service.generate_schedule(med.id, tenant_id, test_actor_id, duration_days=2)
        assert medication_service.due_reminders(tenant_id) == []
        deterministic_clock.set_time(uk(2025, 6, 2, 19, 45))
        reminders = medication_service.due_reminders(tenant_id)
        assert len(reminders) == 1
        assert reminders[0].minutes_until == 15
        assert reminders[0].medication_name == "Amlodipine"
        assert medication_service.due_reminders(tenant_id) == []

    def test_preview_does_not_mark(self, prescribe, medication_service, tenant_id, test_actor_id,
                                   deterministic_clock):
        med = prescribe()
        medication_service.generate_schedule(med.id, tenant_id, test_actor_id, duration_days=2)
        deterministic_clock.set_time(uk(2025, 6, 2, 19, 45))
        assert len(medication_service.due_reminders(tenant_id, mark_sent=False)) == 1
        assert len(medication_service.due_reminders(tenant_id)) == 1

    def test_window_excludes_later_doses(self, prescribe, medication_service, tenant_id,
                                         test_actor_id, deterministic_clock):
        med = prescribe()
        medication_service.generate_schedule(med.id, tenant_id, test_actor_id, duration_days=2)
        deterministic_clock.set_time(uk(2025, 6, 2, 19, 0))
        assert medication_service.due_reminders(tenant_id, window_minutes=30) == []
        assert len(medication_service.due_reminders(tenant_id, window_minutes=60)) == 1
