"""
Pilot Feedback ORM Persistence Models (``care_modules.pilot_feedback.orm``).

Invariants enforced:
    - One pilot and one agent configuration per tenant (unique tenant_id).
    - Feedback events double as the processing queue: ``processing_status``
      ``queued`` rows are the pending work, oldest first.
    - Event id lists on clusters and recommendations are JSON arrays of
      UUID strings.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from care_kernel.db.base import TenantScopedBase, UTCDateTime


def _ids(values) -> list[str]:
    return [str(v) for v in values]


def _uuids(values) -> tuple[UUID, ...]:
    return tuple(UUID(v) for v in values or ())


class PilotModel(TenantScopedBase):
    """ORM model for ``Pilot``."""

    __tablename__ = "pilots"

    care_home_name: Mapped[str] = mapped_column(String(200), nullable=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    region: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    care_home_type: Mapped[str] = mapped_column(String(50), nullable=False)
    contact_email: Mapped[str] = mapped_column(String(254), nullable=False)
    contact_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    features: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_pilot_tenant"),
        Index("idx_pilot_status_region", "status", "region"),
    )

    def to_dto(self):
        from care_modules.pilot_feedback.models import Pilot, PilotStatus
        return Pilot(
            id=self.id,
            tenant_id=self.tenant_id,
            care_home_name=self.care_home_name,
            location=self.location,
            region=self.region,
            size=self.size,
            care_home_type=self.care_home_type,
            contact_email=self.contact_email,
            contact_phone=self.contact_phone,
            status=PilotStatus(self.status),
            start_date=self.start_date,
            end_date=self.end_date,
            features=tuple(self.features or ()),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "PilotModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            care_home_name=dto.care_home_name,
            location=dto.location,
            region=dto.region,
            size=dto.size,
            care_home_type=dto.care_home_type,
            contact_email=dto.contact_email,
            contact_phone=dto.contact_phone,
            status=dto.status.value,
            start_date=dto.start_date,
            end_date=dto.end_date,
            features=list(dto.features),
            created_by_id=created_by_id,
        )


class PilotFeedbackEventModel(TenantScopedBase):
    """ORM model for ``PilotFeedbackEvent``."""

    __tablename__ = "pilot_feedback_events"

    module: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    masked_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    consent_improvement: Mapped[bool] = mapped_column(Boolean, nullable=False)
    processing_status: Mapped[str] = mapped_column(String(20), default="queued", nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_feedback_queue", "processing_status", "submitted_at"),
        Index("idx_feedback_tenant_time", "tenant_id", "submitted_at"),
    )

    def to_dto(self):
        from care_modules.pilot_feedback.models import (
            PilotFeedbackEvent,
            ProcessingStatus,
            Severity,
        )
        return PilotFeedbackEvent(
            id=self.id,
            tenant_id=self.tenant_id,
            module=self.module,
            severity=Severity(self.severity),
            text=self.text,
            submitted_at=self.submitted_at,
            consent_improvement=self.consent_improvement,
            processing_status=ProcessingStatus(self.processing_status),
            masked_text=self.masked_text,
            processed_at=self.processed_at,
            error=self.error,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "PilotFeedbackEventModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            module=dto.module,
            severity=dto.severity.value,
            text=dto.text,
            submitted_at=dto.submitted_at,
            consent_improvement=dto.consent_improvement,
            processing_status=dto.processing_status.value,
            created_by_id=created_by_id,
        )


class AgentClusterModel(TenantScopedBase):
    __tablename__ = "pilot_agent_clusters"

    module: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    theme: Mapped[str] = mapped_column(String(50), nullable=False)
    event_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    keywords: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index("idx_cluster_tenant_time", "tenant_id", "generated_at"),
    )

    def to_dto(self):
        from care_modules.pilot_feedback.models import AgentCluster, Severity
        return AgentCluster(
            id=self.id,
            tenant_id=self.tenant_id,
            module=self.module,
            severity=Severity(self.severity),
            theme=self.theme,
            event_ids=_uuids(self.event_ids),
            keywords=tuple(self.keywords or ()),
            created_at=self.generated_at,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "AgentClusterModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            module=dto.module,
            severity=dto.severity.value,
            theme=dto.theme,
            event_ids=_ids(dto.event_ids),
            keywords=list(dto.keywords),
            generated_at=dto.created_at,
            created_by_id=created_by_id,
        )


class AgentSummaryModel(TenantScopedBase):
    __tablename__ = "pilot_agent_summaries"

    window_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    window_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    top_themes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    total_events: Mapped[int] = mapped_column(Integer, nullable=False)
    risk_notes: Mapped[str] = mapped_column(Text, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index("idx_summary_tenant_time", "tenant_id", "generated_at"),
    )

    def to_dto(self):
        from care_modules.pilot_feedback.models import AgentSummary, ThemeCount
        return AgentSummary(
            id=self.id,
            tenant_id=self.tenant_id,
            window_start=self.window_start,
            window_end=self.window_end,
            top_themes=tuple(
                ThemeCount(theme=t["theme"], count=t["count"], modules=tuple(t["modules"]))
                for t in self.top_themes or ()
            ),
            total_events=self.total_events,
            risk_notes=self.risk_notes,
            created_at=self.generated_at,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "AgentSummaryModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            window_start=dto.window_start,
            window_end=dto.window_end,
            top_themes=[
                {"theme": t.theme, "count": t.count, "modules": list(t.modules)}
                for t in dto.top_themes
            ],
            total_events=dto.total_events,
            risk_notes=dto.risk_notes,
            generated_at=dto.created_at,
            created_by_id=created_by_id,
        )


class AgentRecommendationModel(TenantScopedBase):
    __tablename__ = "pilot_agent_recommendations"

    theme: Mapped[str] = mapped_column(String(50), nullable=False)
    proposed_actions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    linked_event_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    privacy_review: Mapped[str] = mapped_column(String(255), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    decided_by: Mapped[UUID | None] = mapped_column(nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("idx_recommendation_tenant_status", "tenant_id", "status"),
    )

    def to_dto(self):
        from care_modules.pilot_feedback.models import (
            AgentRecommendation,
            Priority,
            RecommendationStatus,
        )
        return AgentRecommendation(
            id=self.id,
            tenant_id=self.tenant_id,
            theme=self.theme,
            proposed_actions=tuple(self.proposed_actions or ()),
            priority=Priority(self.priority),
            linked_event_ids=_uuids(self.linked_event_ids),
            created_at=self.generated_at,
            status=RecommendationStatus(self.status),
            notes=self.notes,
            privacy_review=self.privacy_review,
            decided_by=self.decided_by,
            decided_at=self.decided_at,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "AgentRecommendationModel":
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            theme=dto.theme,
            proposed_actions=list(dto.proposed_actions),
            priority=dto.priority.value,
            linked_event_ids=_ids(dto.linked_event_ids),
            status=dto.status.value,
            notes=dto.notes,
            privacy_review=dto.privacy_review,
            generated_at=dto.created_at,
            created_by_id=created_by_id,
        )


class AgentConfigurationModel(TenantScopedBase):
    __tablename__ = "pilot_agent_configurations"

    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    autonomy: Mapped[str] = mapped_column(String(20), default="recommend_only", nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_agent_config_tenant"),
    )

    def to_dto(self):
        from care_modules.pilot_feedback.models import AgentConfiguration, Autonomy
        return AgentConfiguration(
            tenant_id=self.tenant_id,
            enabled=self.enabled,
            autonomy=Autonomy(self.autonomy),
        )
