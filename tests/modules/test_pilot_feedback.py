"""
Tests for the pilot feedback agent.

Validates:
- PII masking of free text
- Keyword, theme and priority rules
- Pilot registration and lifecycle
- Feedback intake (consent, length, agent switch)
- Queue processing into masked clusters, summaries and recommendations
- One tenant's failure does not affect another tenant's batch
- Human decisions on recommendations
"""

from datetime import date, timedelta

import pytest

from care_kernel.exceptions import (
    ConsentRequiredError,
    DuplicateEntityError,
    InvalidChoiceError,
    InvalidEmailError,
    InvalidTransitionError,
    PilotNotFoundError,
    TenantIsolationError,
    ValidationError,
)
from care_kernel.services.audit_service import AuditService
from care_modules.pilot_feedback.analysis import (
    DEFAULT_ACTIONS,
    GENERAL_THEME,
    extract_keywords,
    extract_theme,
    proposed_actions,
    recommendation_priority,
    summarise_themes,
)
from care_modules.pilot_feedback.config import PilotAgentConfig
from care_modules.pilot_feedback.models import (
    Autonomy,
    PilotStatus,
    Priority,
    ProcessingStatus,
    RecommendationStatus,
    Severity,
    ThemeCount,
)
from care_modules.pilot_feedback.pii import contains_pii, mask_pii
from care_modules.pilot_feedback.service import PilotFeedbackAgentService

MEDICATION_FEEDBACK = [
    "medication chart did not show the evening dose",
    "medication list missing a new prescription",
    "could not record medication for Margaret Thompson",
]


@pytest.fixture
def agent(session, deterministic_clock):
    return PilotFeedbackAgentService(session, clock=deterministic_clock)


@pytest.fixture
def submit(agent, test_actor_id):
    def _submit(tenant_id, text, module="medication", severity=Severity.MEDIUM):
        return agent.submit_feedback(tenant_id, test_actor_id, module, severity, text,
                                     consent_improvement=True)
    return _submit


@pytest.fixture
def pilot(agent, tenant_id, test_actor_id):
    return agent.register_pilot(
        tenant_id, test_actor_id, "Meadow View", "Leeds", "Yorkshire", 42, "residential",
        "Manager@MeadowView.co.uk", "01632 960001", date(2025, 6, 1),
        features=["medication", "billing"],
    )


class TestPIIMasking:
    def test_masks_contact_details_and_names(self):
        text = "please ring Jane Smith on 07700 900123 or email jane.smith@example.com"
        assert mask_pii(text) == "please ring [NAME] on [PHONE] or email [EMAIL]"

    def test_masks_identifiers(self):
        assert mask_pii("nhs 943 476 5919 ni AB123456C") == "nhs [NHS_NUMBER] ni [NI_NUMBER]"

    def test_international_phone(self):
        assert mask_pii("call +44 7700 900123 now") == "call [PHONE] now"

    def test_phone_keeps_following_text(self):
        assert mask_pii("ring 01632-960001, then 07700 900123 again") == "ring [PHONE], then [PHONE] again"

    def test_plain_text_untouched(self):
        text = "the medication screen is slow"
        assert not contains_pii(text)
        assert mask_pii(text) == text


class TestAnalysis:
    def test_keywords_by_frequency(self):
        keywords = extract_keywords(["the medication screen is slow", "medication list slow to load"])
        assert keywords == ("medication", "slow", "screen", "list", "load")

    def test_mask_tokens_are_not_keywords(self):
        assert extract_keywords(["[NAME] said [EMAIL] bounced"]) == ("said", "bounced")

    def test_keyword_limit(self):
        assert len(extract_keywords(["alpha bravo charlie delta"], limit=2)) == 2

    @pytest.mark.parametrize("keywords,theme", [
        (("screen", "slow"), "ui_performance"),
        (("medication",), "medication_issues"),
        (("password", "reset"), "login_problems"),
        (("sync",), "data_sync"),
        (("coffee",), GENERAL_THEME),
    ])
    def test_theme(self, keywords, theme):
        assert extract_theme(keywords) == theme

    def test_actions_fall_back_to_defaults(self):
        assert proposed_actions(GENERAL_THEME) == DEFAULT_ACTIONS
        assert len(proposed_actions("login_problems")) == 2

    @pytest.mark.parametrize("severity,count,priority", [
        (Severity.LOW, 2, Priority.LOW),
        (Severity.LOW, 3, Priority.MEDIUM),
        (Severity.LOW, 5, Priority.HIGH),
        (Severity.LOW, 10, Priority.CRITICAL),
        (Severity.HIGH, 1, Priority.HIGH),
        (Severity.CRITICAL, 1, Priority.CRITICAL),
    ])
    def test_priority(self, severity, count, priority):
        assert recommendation_priority(severity, count, PilotAgentConfig()) == priority

    def test_theme_summary(self):
        themes = summarise_themes([("a", "m1", 3), ("b", "m1", 1), ("a", "m2", 2)])
        assert themes == (ThemeCount("a", 5, ("m1", "m2")), ThemeCount("b", 1, ("m1",)))


class TestAgentConfig:
    def test_defaults(self):
        config = PilotAgentConfig.with_defaults()
        assert config.batch_size == 10
        assert config.min_cluster_size == 2

    @pytest.mark.parametrize("overrides", [
        {"batch_size": 0},
        {"min_cluster_size": 3, "min_recommendation_size": 2},
        {"poll_interval_seconds": 0},
        {"medium_event_count": 6, "high_event_count": 5},
        {"min_text_length": 50, "max_text_length": 20},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ValueError):
            PilotAgentConfig(**overrides)

    def test_from_dict_ignores_unknown_keys(self):
        config = PilotAgentConfig.from_dict({"batch_size": 25, "colour": "blue"})
        assert config.batch_size == 25


class TestPilots:
    def test_register_normalises_contacts(self, pilot):
        assert pilot.contact_email == "manager@meadowview.co.uk"
        assert pilot.contact_phone == "01632960001"
        assert pilot.status == PilotStatus.PENDING
        assert pilot.features == ("medication", "billing")

    def test_one_pilot_per_tenant(self, pilot, agent, tenant_id, test_actor_id):
        with pytest.raises(DuplicateEntityError):
            agent.register_pilot(tenant_id, test_actor_id, "Second", "York", "Yorkshire", 10,
                                 "nursing", "a@b.co.uk", "01632960002", date(2025, 6, 1))

    def test_invalid_registration(self, agent, tenant_id, test_actor_id):
        with pytest.raises(ValidationError):
            agent.register_pilot(tenant_id, test_actor_id, "Meadow View", "Leeds", "Yorkshire", 0,
                                 "residential", "a@b.co.uk", "01632960001", date(2025, 6, 1))
        with pytest.raises(InvalidEmailError):
            agent.register_pilot(tenant_id, test_actor_id, "Meadow View", "Leeds", "Yorkshire", 5,
                                 "residential", "not-an-email", "01632960001", date(2025, 6, 1))

    def test_missing_pilot(self, agent, other_tenant_id):
        with pytest.raises(PilotNotFoundError):
            agent.get_pilot(other_tenant_id)

    def test_status_follows_lifecycle(self, pilot, agent, tenant_id, test_actor_id):
        active = agent.update_pilot(tenant_id, test_actor_id, status="active")
        assert active.status == PilotStatus.ACTIVE
        with pytest.raises(InvalidTransitionError):
            agent.update_pilot(tenant_id, test_actor_id, status=PilotStatus.PENDING)
        with pytest.raises(InvalidChoiceError):
            agent.update_pilot(tenant_id, test_actor_id, status="paused")

    def test_end_date_before_start_rejected(self, pilot, agent, tenant_id, test_actor_id):
        with pytest.raises(ValidationError):
            agent.update_pilot(tenant_id, test_actor_id, end_date=date(2025, 1, 1))

    def test_unchanged_update_not_audited(self, pilot, agent, tenant_id, test_actor_id, session):
        agent.update_pilot(tenant_id, test_actor_id, region="Yorkshire")
        actions = [e.action for e in AuditService(session).list_events(tenant_id, entity_type="Pilot")]
        assert actions == ["PILOT_REGISTERED"]

    def test_list_across_tenants(self, pilot, agent, other_tenant_id, test_actor_id):
        agent.register_pilot(other_tenant_id, test_actor_id, "Riverside", "Bath", "South West", 30,
                             "nursing", "ops@riverside.co.uk", "01632960003", date(2025, 7, 1))
        assert [p.care_home_name for p in agent.list_pilots()] == ["Riverside", "Meadow View"]
        assert [p.care_home_name for p in agent.list_pilots(region="Yorkshire")] == ["Meadow View"]


class TestFeedbackIntake:
    def test_consent_required(self, agent, tenant_id, test_actor_id):
        with pytest.raises(ConsentRequiredError):
            agent.submit_feedback(tenant_id, test_actor_id, "billing", "low",
                                  "invoice totals look wrong", consent_improvement=False)

    def test_text_length(self, submit, tenant_id):
        with pytest.raises(ValidationError):
            submit(tenant_id, "too short")

    def test_unknown_severity(self, submit, tenant_id):
        with pytest.raises(InvalidChoiceError):
            submit(tenant_id, "medication chart is confusing", severity="urgent")

    def test_queued(self, submit, agent, tenant_id):
        event = submit(tenant_id, "medication chart is confusing")
        assert event.processing_status == ProcessingStatus.QUEUED
        assert agent.get_agent_status(tenant_id).queue_size == 1

    def test_disabled_agent_skips(self, submit, agent, tenant_id, test_actor_id):
        config = agent.update_agent_configuration(tenant_id, test_actor_id, enabled=False)
        assert not config.enabled
        assert submit(tenant_id, "medication chart is confusing") is None
        assert agent.list_feedback(tenant_id) == []

    def test_submission_audit_has_no_text(self, submit, session, tenant_id):
        submit(tenant_id, "could not record medication for Margaret Thompson")
        event = AuditService(session).list_events(tenant_id, entity_type="PilotFeedbackEvent")[0]
        assert "Margaret" not in str(event.details)


class TestAgentConfiguration:
    def test_default_configuration(self, agent, tenant_id):
        config = agent.get_agent_configuration(tenant_id)
        assert config.enabled
        assert config.autonomy == Autonomy.RECOMMEND_ONLY

    def test_update_autonomy(self, agent, tenant_id, test_actor_id):
        assert agent.update_agent_configuration(tenant_id, test_actor_id, autonomy="draft").autonomy == Autonomy.DRAFT
        with pytest.raises(InvalidChoiceError):
            agent.update_agent_configuration(tenant_id, test_actor_id, autonomy="autopilot")


class TestQueueProcessing:
    def test_batch_produces_masked_outputs(self, submit, agent, tenant_id, deterministic_clock):
        for text in MEDICATION_FEEDBACK:
            submit(tenant_id, text)
        submit(tenant_id, "invoice layout is hard to read", module="billing", severity=Severity.LOW)

        result = agent.process_queue()
        assert (result.processed, result.failed, result.tenants) == (4, 0, 1)

        outputs = agent.get_agent_outputs(tenant_id)
        assert len(outputs.summaries) == 1
        summary = outputs.summaries[0]
        assert summary.total_events == 4
        assert summary.top_themes == (ThemeCount("medication_issues", 3, ("medication",)),)
        assert summary.risk_notes == (
            "No PHI in outputs. Personal data masked in 1 event(s). Leading theme: medication_issues."
        )

        (cluster,) = outputs.clusters
        assert cluster.module == "medication"
        assert cluster.event_count == 3
        assert cluster.keywords[0] == "medication"
        assert "margaret" not in cluster.keywords
        assert "name" not in cluster.keywords

        (rec,) = outputs.recommendations
        assert rec.priority == Priority.MEDIUM
        assert rec.status == RecommendationStatus.PENDING
        assert set(rec.linked_event_ids) == set(cluster.event_ids)

        processed = agent.list_feedback(tenant_id, processing_status=ProcessingStatus.PROCESSED)
        assert "could not record medication for [NAME]" in {e.masked_text for e in processed}

        status = agent.get_agent_status(tenant_id)
        assert status.queue_size == 0
        assert status.error_count == 0
        assert status.last_run == deterministic_clock.now_utc()

    def test_small_groups_make_no_cluster(self, submit, agent, tenant_id):
        submit(tenant_id, "medication chart is confusing")
        agent.process_queue()
        outputs = agent.get_agent_outputs(tenant_id)
        assert outputs.clusters == ()
        assert outputs.recommendations == ()
        assert outputs.summaries[0].total_events == 1

    def test_batch_size(self, session, deterministic_clock, submit, tenant_id):
        for text in MEDICATION_FEEDBACK:
            submit(tenant_id, text)
        small = PilotFeedbackAgentService(session, clock=deterministic_clock,
                                          config=PilotAgentConfig(batch_size=2))
        assert small.process_queue().processed == 2
        assert small.get_agent_status(tenant_id).queue_size == 1

    def test_empty_queue(self, agent):
        result = agent.process_queue()
        assert (result.processed, result.failed, result.tenants) == (0, 0, 0)

    def test_disabled_tenant_left_queued(self, submit, agent, tenant_id, test_actor_id):
        submit(tenant_id, "medication chart is confusing")
        agent.update_agent_configuration(tenant_id, test_actor_id, enabled=False)
        assert agent.process_queue().tenants == 0
        assert agent.get_agent_status(tenant_id).queue_size == 1

    def test_failing_tenant_is_isolated(self, submit, agent, tenant_id, other_tenant_id, monkeypatch):
        for text in MEDICATION_FEEDBACK:
            submit(tenant_id, text)
        submit(other_tenant_id, "login page rejects my password")
        original = agent._process_tenant

        def flaky(tenant, event_ids, actor_id):
            if tenant == other_tenant_id:
                raise RuntimeError("clustering exploded")
            return original(tenant, event_ids, actor_id)

        monkeypatch.setattr(agent, "_process_tenant", flaky)
        result = agent.process_queue()
        assert (result.processed, result.failed, result.tenants) == (3, 1, 2)

        (failed,) = agent.list_feedback(other_tenant_id)
        assert failed.processing_status == ProcessingStatus.FAILED
        assert failed.error == "RuntimeError: clustering exploded"
        assert agent.get_agent_status(other_tenant_id).error_count == 1
        assert len(agent.get_agent_outputs(tenant_id).summaries) == 1
        assert agent.get_agent_outputs(other_tenant_id).summaries == ()

    def test_outputs_window(self, submit, agent, tenant_id, deterministic_clock):
        for text in MEDICATION_FEEDBACK:
            submit(tenant_id, text)
        agent.process_queue()
        later = deterministic_clock.now_utc() + timedelta(minutes=1)
        assert agent.get_agent_outputs(tenant_id, since=later).summaries == ()


class TestRecommendationDecisions:
    @pytest.fixture
    def recommendation(self, submit, agent, tenant_id):
        for text in MEDICATION_FEEDBACK:
            submit(tenant_id, text)
        agent.process_queue()
        return agent.get_agent_outputs(tenant_id).recommendations[0]

    def test_create_ticket(self, recommendation, agent, tenant_id, test_actor_id, deterministic_clock):
        decided = agent.approve_recommendation(tenant_id, recommendation.id, test_actor_id,
                                               "create_ticket", notes="Raised with the MAR team")
        assert decided.status == RecommendationStatus.CREATE_TICKET
        assert decided.decided_by == test_actor_id
        assert decided.decided_at == deterministic_clock.now_utc()
        with pytest.raises(InvalidTransitionError):
            agent.approve_recommendation(tenant_id, recommendation.id, test_actor_id, "dismiss")

    def test_unknown_action(self, recommendation, agent, tenant_id, test_actor_id):
        with pytest.raises(InvalidChoiceError):
            agent.approve_recommendation(tenant_id, recommendation.id, test_actor_id, "escalate")

    def test_other_tenant_cannot_decide(self, recommendation, agent, other_tenant_id, test_actor_id):
        with pytest.raises(TenantIsolationError):
            agent.approve_recommendation(other_tenant_id, recommendation.id, test_actor_id, "dismiss")
