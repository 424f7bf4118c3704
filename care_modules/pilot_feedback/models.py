"""
Pilot Feedback Domain Models (``care_modules.pilot_feedback.models``).

Responsibility
--------------
Frozen value objects for pilot care homes, the feedback events their
staff submit, and the review agent's outputs: clusters, summaries and
recommendations awaiting human approval.

Invariants enforced
-------------------
* One pilot per tenant.
* Agent outputs only ever hold PII-masked text.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID


class PilotStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ProcessingStatus(Enum):
    QUEUED = "queued"
    PROCESSED = "processed"
    FAILED = "failed"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendationStatus(Enum):
    PENDING = "pending"
    CREATE_TICKET = "create_ticket"
    DISMISSED = "dismissed"


class Autonomy(Enum):
    RECOMMEND_ONLY = "recommend_only"
    DRAFT = "draft"


@dataclass(frozen=True)
class Pilot:
    id: UUID
    tenant_id: UUID
    care_home_name: str
    location: str
    region: str
    size: int
    care_home_type: str
    contact_email: str
    contact_phone: str
    start_date: date
    status: PilotStatus = PilotStatus.PENDING
    end_date: date | None = None
    features: tuple[str, ...] = ()

    def __post_init__(self):
        if self.size <= 0:
            raise ValueError("size must be positive")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date cannot precede start_date")


@dataclass(frozen=True)
class PilotFeedbackEvent:
    id: UUID
    tenant_id: UUID
    module: str
    severity: Severity
    text: str
    submitted_at: datetime
    consent_improvement: bool
    processing_status: ProcessingStatus = ProcessingStatus.QUEUED
    masked_text: str | None = None
    processed_at: datetime | None = None
    error: str | None = None


@dataclass(frozen=True)
class AgentCluster:
    id: UUID
    tenant_id: UUID
    module: str
    severity: Severity
    theme: str
    event_ids: tuple[UUID, ...]
    keywords: tuple[str, ...]
    created_at: datetime

    @property
    def event_count(self) -> int:
        return len(self.event_ids)


@dataclass(frozen=True)
class ThemeCount:
    theme: str
    count: int
    modules: tuple[str, ...]


@dataclass(frozen=True)
class AgentSummary:
    id: UUID
    tenant_id: UUID
    window_start: datetime
    window_end: datetime
    top_themes: tuple[ThemeCount, ...]
    total_events: int
    risk_notes: str
    created_at: datetime


@dataclass(frozen=True)
class AgentRecommendation:
    id: UUID
    tenant_id: UUID
    theme: str
    proposed_actions: tuple[str, ...]
    priority: Priority
    linked_event_ids: tuple[UUID, ...]
    created_at: datetime
    status: RecommendationStatus = RecommendationStatus.PENDING
    notes: str | None = None
    privacy_review: str = "PII-masked; no personal data quoted."
    decided_by: UUID | None = None
    decided_at: datetime | None = None


@dataclass(frozen=True)
class AgentConfiguration:
    tenant_id: UUID
    enabled: bool = True
    autonomy: Autonomy = Autonomy.RECOMMEND_ONLY


@dataclass(frozen=True)
class AgentStatus:
    tenant_id: UUID
    enabled: bool
    autonomy: Autonomy
    queue_size: int
    error_count: int
    last_run: datetime | None = None


@dataclass(frozen=True)
class AgentOutputs:
    tenant_id: UUID
    summaries: tuple[AgentSummary, ...]
    clusters: tuple[AgentCluster, ...]
    recommendations: tuple[AgentRecommendation, ...]


@dataclass(frozen=True)
class QueueRunResult:
    processed: int
    failed: int
    tenants: int
