"""Pilot programme registry and the feedback review agent."""

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
    Priority,
    ProcessingStatus,
    QueueRunResult,
    RecommendationStatus,
    Severity,
    ThemeCount,
)
from care_modules.pilot_feedback.pii import contains_pii, mask_pii
from care_modules.pilot_feedback.service import PilotFeedbackAgentService
from care_modules.pilot_feedback.worker import PilotFeedbackWorker

__all__ = [
    "AgentCluster",
    "AgentConfiguration",
    "AgentOutputs",
    "AgentRecommendation",
    "AgentStatus",
    "AgentSummary",
    "Autonomy",
    "Pilot",
    "PilotAgentConfig",
    "PilotFeedbackAgentService",
    "PilotFeedbackEvent",
    "PilotFeedbackWorker",
    "PilotStatus",
    "Priority",
    "ProcessingStatus",
    "QueueRunResult",
    "RecommendationStatus",
    "Severity",
    "ThemeCount",
    "contains_pii",
    "mask_pii",
]
