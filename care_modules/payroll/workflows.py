"""Payroll Workflows.

State machine for payroll run processing.
"""

from care_kernel.domain.workflow import Guard, Transition, Workflow
from care_kernel.logging_config import get_logger

logger = get_logger("modules.payroll.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_ACTIVE_EMPLOYEES = Guard(
    name="has_active_employees",
    description="At least one active employee is in scope for the run",
)

CALCULATION_COMPLETE = Guard(
    name="calculation_complete",
    description="Every payslip in the run calculated without errors",
)


# -----------------------------------------------------------------------------
# Payroll Run Workflow
# -----------------------------------------------------------------------------

PAYROLL_RUN_WORKFLOW = Workflow(
    name="payroll_run",
    description="Payroll run: draft, processing, completed (or cancelled)",
    initial_state="draft",
    states=("draft", "processing", "completed", "cancelled"),
    transitions=(
        Transition("draft", "processing", action="process", guard=HAS_ACTIVE_EMPLOYEES),
        Transition("processing", "completed", action="complete", guard=CALCULATION_COMPLETE),
        Transition("processing", "draft", action="revert"),
        Transition("draft", "cancelled", action="cancel"),
    ),
    terminal_states=("completed", "cancelled"),
)

logger.debug(
    "payroll_workflow_defined",
    extra={
        "workflow": PAYROLL_RUN_WORKFLOW.name,
        "states": list(PAYROLL_RUN_WORKFLOW.states),
    },
)
