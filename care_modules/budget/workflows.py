"""Budget Workflows.

State machine for the budget approval lifecycle.
"""

from care_kernel.domain.workflow import Guard, Transition, Workflow
from care_kernel.logging_config import get_logger

logger = get_logger("modules.budget.workflows")

APPROVED_BY_AUTHORITY = Guard("approved_by_authority", "Budget approved by an authorised approver")
HAS_LINES = Guard("has_lines", "Budget has at least one line")

BUDGET_WORKFLOW = Workflow(
    name="budget",
    description="Budget: draft, submitted, approved, active, closed",
    initial_state="draft",
    states=("draft", "submitted", "approved", "active", "closed"),
    transitions=(
        Transition("draft", "submitted", action="submit", guard=HAS_LINES),
        Transition("submitted", "approved", action="approve", guard=APPROVED_BY_AUTHORITY),
        Transition("submitted", "draft", action="reject"),
        Transition("approved", "active", action="activate"),
        Transition("active", "closed", action="close"),
    ),
    terminal_states=("closed",),
)

logger.debug("budget_workflow_registered", extra={
    "workflow_name": BUDGET_WORKFLOW.name,
    "state_count": len(BUDGET_WORKFLOW.states),
})
