"""Pilot programme registration, feedback intake and the review agent."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from care_api.auth import Principal, require_roles
from care_api.deps import AuditDep, ClockDep, SessionDep, active_tenant
from care_api.envelope import ok
from care_modules.pilot_feedback.models import Autonomy, PilotStatus, ProcessingStatus, Severity
from care_modules.pilot_feedback.service import PilotFeedbackAgentService

router = APIRouter(dependencies=[Depends(active_tenant)])

_STAFF = ("manager", "nurse", "carer", "finance", "hr")


class PilotRegister(BaseModel):
    model_config = ConfigDict(extra="forbid")

    care_home_name: str = Field(min_length=1)
    location: str
    region: str
    size: int = Field(gt=0)
    care_home_type: str
    contact_email: str
    contact_phone: str
    start_date: date
    end_date: Optional[date] = None
    features: list[str] = []
    status: PilotStatus = PilotStatus.PENDING


class PilotUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    care_home_name: Optional[str] = None
    location: Optional[str] = None
    region: Optional[str] = None
    size: Optional[int] = Field(default=None, gt=0)
    care_home_type: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    status: Optional[PilotStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    features: Optional[list[str]] = None


class AgentConfigIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: Optional[bool] = None
    autonomy: Optional[Autonomy] = None


class FeedbackIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    module: str = Field(min_length=1, max_length=50)
    severity: Severity
    text: str
    consent_improvement: bool


class RecommendationDecision(BaseModel):
    action: str = Field(description="create_ticket or dismiss")
    notes: Optional[str] = None


def _service(session: SessionDep, clock: ClockDep, audit: AuditDep) -> PilotFeedbackAgentService:
    return PilotFeedbackAgentService(session, clock=clock, audit=audit)


@router.post("", status_code=201, summary="Register the caller's tenant as a pilot site")
def register_pilot(
    body: PilotRegister,
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.register_pilot(principal.tenant_id, principal.user_id, **body.model_dump()))


@router.get("", summary="List pilots across tenants")
def list_pilots(
    status: Optional[PilotStatus] = None,
    region: Optional[str] = None,
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("admin")),
):
    return ok(service.list_pilots(status, region))


@router.post("/agent/run", summary="Process one batch of queued feedback")
def process_queue(
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("admin")),
):
    return ok(service.process_queue())


@router.get("/me", summary="The caller's pilot record")
def get_pilot(
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.get_pilot(principal.tenant_id))


@router.patch("/me", summary="Update the pilot record")
def update_pilot(
    body: PilotUpdate,
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.update_pilot(principal.tenant_id, principal.user_id, **body.model_dump(exclude_unset=True)))


@router.get("/me/agent-config", summary="Feedback agent configuration")
def get_agent_configuration(
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.get_agent_configuration(principal.tenant_id))


@router.put("/me/agent-config", summary="Enable, disable or tune the feedback agent")
def update_agent_configuration(
    body: AgentConfigIn,
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.update_agent_configuration(
        principal.tenant_id, principal.user_id, enabled=body.enabled, autonomy=body.autonomy
    ))


@router.post("/me/feedback", status_code=202, summary="Submit product feedback")
def submit_feedback(
    body: FeedbackIn,
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles(*_STAFF)),
):
    event = service.submit_feedback(principal.tenant_id, principal.user_id, **body.model_dump())
    return ok({"accepted": event is not None, "event": event})


@router.get("/me/feedback", summary="List feedback events (masked)")
def list_feedback(
    processing_status: Optional[ProcessingStatus] = None,
    limit: int = Query(default=100, ge=1, le=500),
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.list_feedback(principal.tenant_id, processing_status, limit))


@router.get("/me/agent-status", summary="Queue size, errors and last run")
def get_agent_status(
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.get_agent_status(principal.tenant_id))


@router.get("/me/agent-outputs", summary="Clusters, summaries and recommendations")
def get_agent_outputs(
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.get_agent_outputs(principal.tenant_id, since, until))


@router.post("/me/recommendations/{recommendation_id}/decision", summary="Act on a recommendation")
def approve_recommendation(
    recommendation_id: UUID,
    body: RecommendationDecision,
    service: PilotFeedbackAgentService = Depends(_service),
    principal: Principal = Depends(require_roles("manager")),
):
    return ok(service.approve_recommendation(
        principal.tenant_id, recommendation_id, principal.user_id, body.action, body.notes
    ))
