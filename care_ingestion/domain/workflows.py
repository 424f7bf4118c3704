"""Import batch lifecycle."""

from care_kernel.domain.workflow import Transition, Workflow

IMPORT_BATCH_WORKFLOW = Workflow(
    name="import_batch",
    description="Migration batch: staged, validated, completed (promoted) or rolled back",
    initial_state="staged",
    states=("staged", "validated", "completed", "rolled_back"),
    transitions=(
        Transition("staged", "validated", action="validate"),
        Transition("validated", "validated", action="validate"),
        Transition("validated", "completed", action="promote"),
        Transition("completed", "rolled_back", action="rollback"),
    ),
    terminal_states=("rolled_back",),
)
