"""Medication Workflows.

Prescription lifecycle and the per-dose recording state machine.
"""

from care_kernel.domain.workflow import Transition, Workflow

MEDICATION_WORKFLOW = Workflow(
    name="medication",
    description="Prescription: active, suspended, discontinued or completed",
    initial_state="active",
    states=("active", "suspended", "discontinued", "completed"),
    transitions=(
        Transition("active", "suspended", action="suspend"),
        Transition("suspended", "active", action="resume"),
        Transition("active", "discontinued", action="discontinue"),
        Transition("suspended", "discontinued", action="discontinue"),
        Transition("active", "completed", action="complete"),
    ),
    terminal_states=("discontinued", "completed"),
)

DOSE_WORKFLOW = Workflow(
    name="scheduled_dose",
    description="A scheduled dose is recorded exactly once",
    initial_state="pending",
    states=("pending", "administered", "missed", "refused", "omitted"),
    transitions=(
        Transition("pending", "administered", action="administered"),
        Transition("pending", "missed", action="missed"),
        Transition("pending", "refused", action="refused"),
        Transition("pending", "omitted", action="omitted"),
    ),
    terminal_states=("administered", "missed", "refused", "omitted"),
)
