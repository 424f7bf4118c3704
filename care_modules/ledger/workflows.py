"""Ledger Workflows.

Lifecycle of a ledger account.
"""

from care_kernel.domain.workflow import Guard, Transition, Workflow

NOT_SYSTEM_ACCOUNT = Guard("not_system_account", "Account is not a protected system account")
NO_CHILDREN = Guard("no_children", "Account has no child accounts")
ZERO_BALANCE = Guard("zero_balance", "Account balance is zero")

LEDGER_ACCOUNT_WORKFLOW = Workflow(
    name="ledger_account",
    description="Ledger account: active, inactive, closed",
    initial_state="active",
    states=("active", "inactive", "closed"),
    transitions=(
        Transition("active", "inactive", action="deactivate", guard=ZERO_BALANCE),
        Transition("inactive", "active", action="activate"),
        Transition("active", "closed", action="close", guard=ZERO_BALANCE),
        Transition("inactive", "closed", action="close", guard=ZERO_BALANCE),
    ),
    terminal_states=("closed",),
)
