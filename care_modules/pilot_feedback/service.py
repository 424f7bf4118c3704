"""
Pilot Feedback Agent Service (``care_modules.pilot_feedback.service``).

Responsibility
--------------
Pilot care-home registration and the feedback review agent: consented
feedback is queued, then processed in tenant-grouped batches into
PII-masked clusters, a summary and recommendations that wait for a human
decision.

Architecture position
---------------------
**Modules layer** -- owns the transaction boundary.  The feedback table is
the queue (``processing_status = 'queued'``), so any process can drain it;
``PilotFeedbackWorker`` polls ``process_queue`` in the background.

Invariants enforced
-------------------
* Feedback without ``consent_improvement`` is rejected.
* Agent outputs are built from masked text only.
* One tenant's failing batch marks only that tenant's events failed.
* Recommendations are decided once: pending -> create_ticket | dismissed.

Failure modes
-------------
* ``ConsentRequiredError`` / ``ValidationError`` (400) -> bad submission.
* ``DuplicateEntityError`` (409) -> second pilot for a tenant.
* ``InvalidTransitionError`` (409) -> re-deciding a recommendation.

Audit relevance
---------------
Pilot registration and updates, feedback submission, batch outcomes
(processed and failed), recommendation decisions and configuration
changes are audited.  Feedback text never appears in audit details.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.domain.validation import (
    require,
    validate_choice,
    validate_email,
    validate_uk_phone,
)
from care_kernel.exceptions import (
    ConsentRequiredError,
    DuplicateEntityError,
    InvalidChoiceError,
    InvalidTransitionError,
    PilotNotFoundError,
    RecommendationNotFoundError,
    ValidationError,
)
from care_kernel.logging_config import get_logger
from care_kernel.services.audit_service import AuditService
from care_modules._service_helpers import apply_changes, get_scoped, transaction
from care_modules.pilot_feedback.analysis import (
    extract_keywords,
    extract_theme,
    group_events,
    proposed_actions,
    recommendation_priority,
    risk_notes,
    summarise_themes,
)
from care_modules.pilot_feedback.config import PilotAgentConfig
from care_modules.pilot_feedback.models import (
    AgentCluster,
    AgentConfiguration,
    AgentOutputs,
    AgentRecommendation,
    AgentStatus,
    AgentSummary,
    Autonomy,
    Pilot,
    PilotFeedbackEvent,
    PilotStatus,
    ProcessingStatus,
    QueueRunResult,
    Severity,
)
from care_modules.pilot_feedback.orm import (
    AgentClusterModel,
    AgentConfigurationModel,
    AgentRecommendationModel,
    AgentSummaryModel,
    PilotFeedbackEventModel,
    PilotModel,
)
from care_modules.pilot_feedback.pii import contains_pii, mask_pii
from care_modules.pilot_feedback.workflows import PILOT_WORKFLOW, RECOMMENDATION_WORKFLOW

logger = get_logger("modules.pilot_feedback.service")

# Actor recorded on rows the agent writes itself
AGENT_ACTOR_ID = UUID(int=0)

ERROR_WINDOW = timedelta(hours=24)

_UPDATABLE_FIELDS = (
    "care_home_name",
    "location",
    "region",
    "size",
    "care_home_type",
    "contact_email",
    "contact_phone",
    "status",
    "start_date",
    "end_date",
    "features",
)


class PilotFeedbackAgentService:
    """Pilot programme records and the feedback review agent."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: PilotAgentConfig | None = None,
        audit: AuditService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or PilotAgentConfig.with_defaults()
        self._audit = audit or AuditService(session, clock=self._clock)

    # -- pilots ----------------------------------------------------------

    def _pilot_row(self, tenant_id: UUID) -> PilotModel:
        row = self._session.execute(
            select(PilotModel).where(PilotModel.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if row is None:
            raise PilotNotFoundError(tenant_id)
        return row

    def register_pilot(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        care_home_name: str,
        location: str,
        region: str,
        size: int,
        care_home_type: str,
        contact_email: str,
        contact_phone: str,
        start_date: date,
        end_date: date | None = None,
        features: tuple[str, ...] | list[str] = (),
        status: PilotStatus = PilotStatus.PENDING,
    ) -> Pilot:
        for value, field in (
            (care_home_name, "care_home_name"),
            (location, "location"),
            (region, "region"),
            (care_home_type, "care_home_type"),
        ):
            require(value, field)
        try:
            pilot = Pilot(
                id=uuid4(),
                tenant_id=tenant_id,
                care_home_name=care_home_name.strip(),
                location=location.strip(),
                region=region.strip(),
                size=int(size),
                care_home_type=care_home_type,
                contact_email=validate_email(contact_email),
                contact_phone=validate_uk_phone(contact_phone),
                start_date=start_date,
                end_date=end_date,
                status=PilotStatus(status),
                features=tuple(features),
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        with transaction(self._session, "register_pilot"):
            clash = self._session.execute(
                select(PilotModel.id).where(PilotModel.tenant_id == tenant_id)
            ).scalar_one_or_none()
            if clash is not None:
                raise DuplicateEntityError("Pilot", "tenant_id", tenant_id)
            self._session.add(PilotModel.from_dto(pilot, created_by_id=actor_id))
            self._session.flush()
            self._audit.record(
                "PILOT_REGISTERED", "Pilot", pilot.id, tenant_id=tenant_id,
                actor_id=actor_id, details={"region": pilot.region, "size": pilot.size},
            )

        logger.info("pilot_registered", extra={"pilot_id": str(pilot.id), "region": pilot.region})
        return pilot

    def get_pilot(self, tenant_id: UUID) -> Pilot:
        return self._pilot_row(tenant_id).to_dto()

    def update_pilot(self, tenant_id: UUID, actor_id: UUID, **changes: Any) -> Pilot:
        """Update pilot fields.  A status change must follow the pilot lifecycle."""
        if changes.get("contact_email") is not None:
            changes["contact_email"] = validate_email(changes["contact_email"])
        if changes.get("contact_phone") is not None:
            changes["contact_phone"] = validate_uk_phone(changes["contact_phone"])
        if changes.get("features") is not None:
            changes["features"] = list(changes["features"])
        if changes.get("status") is not None:
            try:
                changes["status"] = PilotStatus(changes["status"])
            except ValueError as exc:
                raise InvalidChoiceError(
                    "status", changes["status"], [s.value for s in PilotStatus]
                ) from exc

        with transaction(self._session, "update_pilot"):
            orm = self._pilot_row(tenant_id)
            target = changes.get("status")
            if target is not None and target.value != orm.status:
                if not any(
                    t.from_state == orm.status and t.to_state == target.value
                    for t in PILOT_WORKFLOW.transitions
                ):
                    raise InvalidTransitionError("Pilot", orm.status, f"set status {target.value}")
            changed = apply_changes(orm, changes, _UPDATABLE_FIELDS, actor_id)
            try:
                result = orm.to_dto()
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
            if changed:
                self._session.flush()
                self._audit.record(
                    "PILOT_UPDATED", "Pilot", orm.id, tenant_id=tenant_id,
                    actor_id=actor_id, details={"fields": changed},
                )

        logger.info("pilot_updated", extra={"pilot_id": str(result.id), "fields": changed})
        return result

    def list_pilots(
        self, status: PilotStatus | None = None, region: str | None = None
    ) -> list[Pilot]:
        """All pilots across tenants.  Programme-level view for administrators."""
        stmt = select(PilotModel).order_by(PilotModel.region, PilotModel.care_home_name)
        if status is not None:
            stmt = stmt.where(PilotModel.status == PilotStatus(status).value)
        if region is not None:
            stmt = stmt.where(PilotModel.region == region)
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    # -- agent configuration ---------------------------------------------

    def _config_row(self, tenant_id: UUID) -> AgentConfigurationModel | None:
        return self._session.execute(
            select(AgentConfigurationModel).where(AgentConfigurationModel.tenant_id == tenant_id)
        ).scalar_one_or_none()

    def get_agent_configuration(self, tenant_id: UUID) -> AgentConfiguration:
        row = self._config_row(tenant_id)
        return row.to_dto() if row is not None else AgentConfiguration(tenant_id=tenant_id)

    def update_agent_configuration(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        enabled: bool | None = None,
        autonomy: Autonomy | str | None = None,
    ) -> AgentConfiguration:
        if autonomy is not None and not isinstance(autonomy, Autonomy):
            autonomy = Autonomy(validate_choice(autonomy, [a.value for a in Autonomy], "autonomy"))
        with transaction(self._session, "update_agent_configuration"):
            row = self._config_row(tenant_id)
            if row is None:
                row = AgentConfigurationModel(
                    tenant_id=tenant_id, enabled=True,
                    autonomy=Autonomy.RECOMMEND_ONLY.value, created_by_id=actor_id,
                )
                self._session.add(row)
            requested = {"enabled": enabled, "autonomy": autonomy}
            changed = apply_changes(
                row, {k: v for k, v in requested.items() if v is not None}, ("enabled", "autonomy"), actor_id
            )
            self._session.flush()
            if changed:
                self._audit.record(
                    "PILOT_AGENT_CONFIGURED", "AgentConfiguration", row.id, tenant_id=tenant_id,
                    actor_id=actor_id,
                    details={"enabled": row.enabled, "autonomy": row.autonomy},
                )
            result = row.to_dto()

        logger.info(
            "pilot_agent_configured",
            extra={"tenant_id": str(tenant_id), "enabled": result.enabled, "fields": changed},
        )
        return result

    # -- feedback intake -------------------------------------------------

    def submit_feedback(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        module: str,
        severity: Severity | str,
        text: str,
        consent_improvement: bool,
        submitted_at: datetime | None = None,
    ) -> PilotFeedbackEvent | None:
        """Queue one feedback event.  Returns None when the tenant's agent is off."""
        if not consent_improvement:
            raise ConsentRequiredError("feedback submitter", "service improvement")
        require(module, "module")
        require(text, "text")
        text = text.strip()
        if not self._config.min_text_length <= len(text) <= self._config.max_text_length:
            raise ValidationError(
                f"text must be between {self._config.min_text_length} and "
                f"{self._config.max_text_length} characters",
                "text",
            )
        try:
            severity = Severity(severity)
        except ValueError as exc:
            raise InvalidChoiceError("severity", severity, [s.value for s in Severity]) from exc

        if not self.get_agent_configuration(tenant_id).enabled:
            logger.info("pilot_feedback_skipped_agent_disabled", extra={"tenant_id": str(tenant_id)})
            return None

        event = PilotFeedbackEvent(
            id=uuid4(),
            tenant_id=tenant_id,
            module=module.strip(),
            severity=severity,
            text=text,
            submitted_at=submitted_at or self._clock.now_utc(),
            consent_improvement=True,
        )
        with transaction(self._session, "submit_feedback"):
            self._session.add(PilotFeedbackEventModel.from_dto(event, created_by_id=actor_id))
            self._session.flush()
            self._audit.record(
                "PILOT_FEEDBACK_SUBMITTED", "PilotFeedbackEvent", event.id, tenant_id=tenant_id,
                actor_id=actor_id, details={"module": event.module, "severity": severity.value},
            )

        logger.info(
            "pilot_feedback_queued",
            extra={"event_id": str(event.id), "feedback_module": event.module, "severity": severity.value},
        )
        return event

    def list_feedback(
        self,
        tenant_id: UUID,
        processing_status: ProcessingStatus | None = None,
        limit: int = 100,
    ) -> list[PilotFeedbackEvent]:
        stmt = (
            select(PilotFeedbackEventModel)
            .where(PilotFeedbackEventModel.tenant_id == tenant_id)
            .order_by(PilotFeedbackEventModel.submitted_at.desc())
            .limit(limit)
        )
        if processing_status is not None:
            stmt = stmt.where(
                PilotFeedbackEventModel.processing_status == ProcessingStatus(processing_status).value
            )
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    # -- queue processing ------------------------------------------------

    def _next_batch(self) -> list[PilotFeedbackEventModel]:
        disabled = select(AgentConfigurationModel.tenant_id).where(
            AgentConfigurationModel.enabled.is_(False)
        )
        stmt = (
            select(PilotFeedbackEventModel)
            .where(
                PilotFeedbackEventModel.processing_status == ProcessingStatus.QUEUED.value,
                PilotFeedbackEventModel.tenant_id.not_in(disabled),
            )
            .order_by(PilotFeedbackEventModel.submitted_at, PilotFeedbackEventModel.id)
            .limit(self._config.batch_size)
        )
        return list(self._session.execute(stmt).scalars())

    def process_queue(self, actor_id: UUID = AGENT_ACTOR_ID) -> QueueRunResult:
        """Process one batch of queued feedback, tenant by tenant.

        A tenant whose batch raises has its events marked failed; the
        remaining tenants are still processed.
        """
        rows = self._next_batch()
        by_tenant: dict[UUID, list[UUID]] = defaultdict(list)
        for row in rows:
            by_tenant[row.tenant_id].append(row.id)

        processed = failed = 0
        for tenant_id, event_ids in by_tenant.items():
            try:
                with transaction(self._session, "process_feedback_batch"):
                    self._process_tenant(tenant_id, event_ids, actor_id)
                processed += len(event_ids)
            except Exception as exc:
                logger.exception(
                    "pilot_feedback_batch_failed",
                    extra={"tenant_id": str(tenant_id), "event_count": len(event_ids)},
                )
                self._mark_failed(tenant_id, event_ids, actor_id, exc)
                failed += len(event_ids)

        if rows:
            logger.info(
                "pilot_feedback_queue_processed",
                extra={"processed": processed, "failed": failed, "tenants": len(by_tenant)},
            )
        return QueueRunResult(processed=processed, failed=failed, tenants=len(by_tenant))

    def _process_tenant(self, tenant_id: UUID, event_ids: list[UUID], actor_id: UUID) -> None:
        now = self._clock.now_utc()
        rows = [self._session.get(PilotFeedbackEventModel, event_id) for event_id in event_ids]

        pii_masked = 0
        for row in rows:
            if contains_pii(row.text):
                pii_masked += 1
            row.masked_text = mask_pii(row.text)
        events = [row.to_dto() for row in rows]

        clusters: list[AgentCluster] = []
        for (module, severity), members in group_events(events).items():
            if len(members) < self._config.min_cluster_size:
                continue
            keywords = extract_keywords(
                (e.masked_text for e in members), limit=self._config.max_keywords
            )
            clusters.append(AgentCluster(
                id=uuid4(),
                tenant_id=tenant_id,
                module=module,
                severity=severity,
                theme=extract_theme(keywords),
                event_ids=tuple(e.id for e in members),
                keywords=keywords,
                created_at=now,
            ))

        top_themes = summarise_themes(
            ((c.theme, c.module, c.event_count) for c in clusters),
            limit=self._config.top_theme_count,
        )
        summary = AgentSummary(
            id=uuid4(),
            tenant_id=tenant_id,
            window_start=min(e.submitted_at for e in events),
            window_end=max(e.submitted_at for e in events),
            top_themes=top_themes,
            total_events=len(events),
            risk_notes=risk_notes(events, pii_masked, top_themes),
            created_at=now,
        )
        recommendations = [
            AgentRecommendation(
                id=uuid4(),
                tenant_id=tenant_id,
                theme=c.theme,
                proposed_actions=proposed_actions(c.theme),
                priority=recommendation_priority(c.severity, c.event_count, self._config),
                linked_event_ids=c.event_ids,
                created_at=now,
            )
            for c in clusters
            if c.event_count >= self._config.min_recommendation_size
        ]

        for cluster in clusters:
            self._session.add(AgentClusterModel.from_dto(cluster, created_by_id=actor_id))
        self._session.add(AgentSummaryModel.from_dto(summary, created_by_id=actor_id))
        for rec in recommendations:
            self._session.add(AgentRecommendationModel.from_dto(rec, created_by_id=actor_id))

        for row in rows:
            row.processing_status = ProcessingStatus.PROCESSED.value
            row.processed_at = now
            row.error = None
            row.updated_by_id = actor_id

        config = self._config_row(tenant_id)
        if config is None:
            config = AgentConfigurationModel(
                tenant_id=tenant_id, enabled=True,
                autonomy=Autonomy.RECOMMEND_ONLY.value, created_by_id=actor_id,
            )
            self._session.add(config)
        config.last_run_at = now
        self._session.flush()

        self._audit.record(
            "PILOT_FEEDBACK_BATCH_PROCESSED", "AgentSummary", summary.id, tenant_id=tenant_id,
            actor_id=actor_id,
            details={
                "events": len(events),
                "clusters": len(clusters),
                "recommendations": len(recommendations),
                "pii_masked": pii_masked,
            },
        )

    def _mark_failed(
        self, tenant_id: UUID, event_ids: list[UUID], actor_id: UUID, exc: Exception
    ) -> None:
        now = self._clock.now_utc()
        with transaction(self._session, "mark_feedback_failed"):
            for event_id in event_ids:
                row = self._session.get(PilotFeedbackEventModel, event_id)
                row.processing_status = ProcessingStatus.FAILED.value
                row.processed_at = now
                row.error = f"{type(exc).__name__}: {exc}"[:500]
                row.updated_by_id = actor_id
            self._session.flush()
            self._audit.record(
                "PILOT_FEEDBACK_BATCH_FAILED", "PilotFeedbackEvent", None, tenant_id=tenant_id,
                actor_id=actor_id,
                details={"event_ids": [str(i) for i in event_ids], "error": type(exc).__name__},
            )

    # -- outputs and decisions -------------------------------------------

    def approve_recommendation(
        self,
        tenant_id: UUID,
        recommendation_id: UUID,
        actor_id: UUID,
        action: str,
        notes: str | None = None,
    ) -> AgentRecommendation:
        """Record the human decision on a recommendation: create_ticket or dismiss."""
        validate_choice(action, [t.action for t in RECOMMENDATION_WORKFLOW.transitions], "action")
        with transaction(self._session, "approve_recommendation"):
            orm = get_scoped(
                self._session, AgentRecommendationModel, recommendation_id, tenant_id,
                RecommendationNotFoundError,
            )
            orm.status = RECOMMENDATION_WORKFLOW.transition_for(orm.status, action).to_state
            orm.notes = notes
            orm.decided_by = actor_id
            orm.decided_at = self._clock.now_utc()
            orm.updated_by_id = actor_id
            self._session.flush()
            self._audit.record(
                "PILOT_RECOMMENDATION_DECIDED", "AgentRecommendation", recommendation_id,
                tenant_id=tenant_id, actor_id=actor_id,
                details={"action": action, "priority": orm.priority, "theme": orm.theme},
            )
            result = orm.to_dto()

        logger.info(
            "pilot_recommendation_decided",
            extra={"recommendation_id": str(recommendation_id), "status": result.status.value},
        )
        return result

    def get_agent_status(self, tenant_id: UUID) -> AgentStatus:
        config = self._config_row(tenant_id)
        queue_size = self._session.execute(
            select(func.count()).select_from(PilotFeedbackEventModel).where(
                PilotFeedbackEventModel.tenant_id == tenant_id,
                PilotFeedbackEventModel.processing_status == ProcessingStatus.QUEUED.value,
            )
        ).scalar_one()
        error_count = self._session.execute(
            select(func.count()).select_from(PilotFeedbackEventModel).where(
                PilotFeedbackEventModel.tenant_id == tenant_id,
                PilotFeedbackEventModel.processing_status == ProcessingStatus.FAILED.value,
                PilotFeedbackEventModel.processed_at >= self._clock.now_utc() - ERROR_WINDOW,
            )
        ).scalar_one()
        return AgentStatus(
            tenant_id=tenant_id,
            enabled=config.enabled if config is not None else True,
            autonomy=Autonomy(config.autonomy) if config is not None else Autonomy.RECOMMEND_ONLY,
            queue_size=queue_size,
            error_count=error_count,
            last_run=config.last_run_at if config is not None else None,
        )

    def get_agent_outputs(
        self,
        tenant_id: UUID,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> AgentOutputs:
        def window(model):
            stmt = select(model).where(model.tenant_id == tenant_id)
            if since is not None:
                stmt = stmt.where(model.generated_at >= since)
            if until is not None:
                stmt = stmt.where(model.generated_at <= until)
            return [row.to_dto() for row in self._session.execute(
                stmt.order_by(model.generated_at.desc())
            ).scalars()]

        return AgentOutputs(
            tenant_id=tenant_id,
            summaries=tuple(window(AgentSummaryModel)),
            clusters=tuple(window(AgentClusterModel)),
            recommendations=tuple(window(AgentRecommendationModel)),
        )
