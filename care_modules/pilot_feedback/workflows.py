"""Pilot Feedback Workflows.

Pilot programme lifecycle and the human decision on agent recommendations.
"""

from care_kernel.domain.workflow import Transition, Workflow

PILOT_WORKFLOW = Workflow(
    name="pilot",
    description="Pilot programme: pending, active, inactive, completed or cancelled",
    initial_state="pending",
    states=("pending", "active", "inactive", "completed", "cancelled"),
    transitions=(
        Transition("pending", "active", action="activate"),
        Transition("inactive", "active", action="activate"),
        Transition("active", "inactive", action="deactivate"),
        Transition("active", "completed", action="complete"),
        Transition("inactive", "completed", action="complete"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("active", "cancelled", action="cancel"),
        Transition("inactive", "cancelled", action="cancel"),
    ),
    terminal_states=("completed", "cancelled"),
)

RECOMMENDATION_WORKFLOW = Workflow(
    name="agent_recommendation",
    description="Agent recommendation awaiting a human decision",
    initial_state="pending",
    states=("pending", "create_ticket", "dismissed"),
    transitions=(
        Transition("pending", "create_ticket", action="create_ticket"),
        Transition("pending", "dismissed", action="dismiss"),
    ),
    terminal_states=("create_ticket", "dismissed"),
)
