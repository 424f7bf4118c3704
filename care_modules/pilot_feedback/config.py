"""
Pilot Feedback Agent Configuration Schema.

Batching and clustering thresholds for the feedback review agent.  The
per-tenant on/off switch and autonomy level live in the database
(``AgentConfiguration``); this is the operator-wide policy.
"""

from dataclasses import dataclass, fields
from typing import Any, Self

from care_kernel.logging_config import get_logger

logger = get_logger("modules.pilot_feedback.config")


@dataclass
class PilotAgentConfig:
    """Configuration schema for the pilot feedback agent.

        config = PilotAgentConfig(batch_size=25, poll_interval_seconds=30)
    """

    batch_size: int = 10
    min_cluster_size: int = 2
    min_recommendation_size: int = 3
    max_keywords: int = 10
    top_theme_count: int = 5
    poll_interval_seconds: float = 60.0

    # Event counts that lift a recommendation's priority regardless of severity
    critical_event_count: int = 10
    high_event_count: int = 5
    medium_event_count: int = 3

    min_text_length: int = 10
    max_text_length: int = 2000

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.min_cluster_size < 1:
            raise ValueError("min_cluster_size must be at least 1")
        if self.min_recommendation_size < self.min_cluster_size:
            raise ValueError("min_recommendation_size cannot be below min_cluster_size")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if not (self.medium_event_count <= self.high_event_count <= self.critical_event_count):
            raise ValueError("priority event counts must be ascending")
        if self.min_text_length > self.max_text_length:
            raise ValueError("min_text_length cannot exceed max_text_length")
        logger.debug(
            "pilot_agent_config_initialized",
            extra={"batch_size": self.batch_size, "min_cluster_size": self.min_cluster_size},
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
