"""Resident Workflows.

Lifecycle of a resident's stay.
"""

from care_kernel.domain.workflow import Transition, Workflow

RESIDENT_WORKFLOW = Workflow(
    name="resident",
    description="Resident stay: active, temporary absence, discharged or deceased",
    initial_state="active",
    states=("active", "temporary_absence", "discharged", "deceased"),
    transitions=(
        Transition("active", "temporary_absence", action="start_absence"),
        Transition("temporary_absence", "active", action="return"),
        Transition("active", "discharged", action="discharge"),
        Transition("temporary_absence", "discharged", action="discharge"),
        Transition("active", "deceased", action="record_death"),
        Transition("temporary_absence", "deceased", action="record_death"),
    ),
    terminal_states=("discharged", "deceased"),
)
