"""Tests for the Workflow state machine and the lifecycles modules declare."""

import pytest

from care_ingestion.domain.workflows import IMPORT_BATCH_WORKFLOW
from care_kernel.domain.workflow import Transition, Workflow
from care_kernel.exceptions import InvalidTransitionError
from care_modules.billing.workflows import BILL_WORKFLOW
from care_modules.budget.workflows import BUDGET_WORKFLOW
from care_modules.ledger.workflows import LEDGER_ACCOUNT_WORKFLOW
from care_modules.medication.workflows import DOSE_WORKFLOW, MEDICATION_WORKFLOW
from care_modules.payroll.workflows import PAYROLL_RUN_WORKFLOW
from care_modules.pilot_feedback.workflows import PILOT_WORKFLOW, RECOMMENDATION_WORKFLOW
from care_modules.residents.workflows import RESIDENT_WORKFLOW

ALL_WORKFLOWS = [
    BILL_WORKFLOW,
    BUDGET_WORKFLOW,
    LEDGER_ACCOUNT_WORKFLOW,
    DOSE_WORKFLOW,
    MEDICATION_WORKFLOW,
    PAYROLL_RUN_WORKFLOW,
    PILOT_WORKFLOW,
    RECOMMENDATION_WORKFLOW,
    RESIDENT_WORKFLOW,
    IMPORT_BATCH_WORKFLOW,
]

DOOR = Workflow(
    name="door",
    description="A door",
    initial_state="closed",
    states=("closed", "open", "locked"),
    transitions=(
        Transition("closed", "open", action="open"),
        Transition("open", "closed", action="close"),
        Transition("closed", "locked", action="lock"),
    ),
)


class TestWorkflow:
    def test_transition_for(self):
        assert DOOR.transition_for("closed", "open").to_state == "open"

    def test_undefined_action_raises(self):
        with pytest.raises(InvalidTransitionError):
            DOOR.transition_for("locked", "open")

    def test_can_and_actions(self):
        assert DOOR.can("open", "close")
        assert not DOOR.can("open", "lock")
        assert DOOR.actions_from("closed") == ("open", "lock")
        assert DOOR.actions_from("locked") == ()

    def test_initial_state_must_exist(self):
        with pytest.raises(ValueError):
            Workflow("bad", "", "missing", ("a",), ())

    def test_transitions_must_reference_states(self):
        with pytest.raises(ValueError):
            Workflow("bad", "", "a", ("a",), (Transition("a", "b", action="go"),))


class TestModuleWorkflows:
    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_terminal_states_have_no_exits(self, workflow):
        for state in workflow.terminal_states:
            assert workflow.actions_from(state) == ()

    @pytest.mark.parametrize("workflow", ALL_WORKFLOWS, ids=lambda w: w.name)
    def test_every_state_reachable(self, workflow):
        reached = {workflow.initial_state}
        frontier = [workflow.initial_state]
        while frontier:
            state = frontier.pop()
            for t in workflow.transitions:
                if t.from_state == state and t.to_state not in reached:
                    reached.add(t.to_state)
                    frontier.append(t.to_state)
        assert reached == set(workflow.states)
