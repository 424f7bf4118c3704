"""Billing Workflows.

State machine for resident bills and funder claims.
"""

from care_kernel.domain.workflow import Guard, Transition, Workflow

BALANCE_SETTLED = Guard(
    name="balance_settled",
    description="Amount paid equals the bill total",
)

NOTHING_PAID = Guard(
    name="nothing_paid",
    description="No payments have been recorded against the bill",
)

_OPEN = ("issued", "partially_paid", "overdue")

BILL_WORKFLOW = Workflow(
    name="bill",
    description="Resident bill: draft, issued, part paid, paid, overdue or written off",
    initial_state="draft",
    states=("draft", "issued", "partially_paid", "paid", "overdue", "cancelled", "written_off"),
    transitions=(
        Transition("draft", "issued", action="issue"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("issued", "cancelled", action="cancel", guard=NOTHING_PAID),
        Transition("issued", "partially_paid", action="pay_partial"),
        Transition("partially_paid", "partially_paid", action="pay_partial"),
        Transition("overdue", "overdue", action="pay_partial"),
        *(Transition(s, "paid", action="pay_full", guard=BALANCE_SETTLED) for s in _OPEN),
        Transition("issued", "overdue", action="mark_overdue"),
        Transition("partially_paid", "overdue", action="mark_overdue"),
        *(Transition(s, "written_off", action="write_off") for s in _OPEN),
    ),
    terminal_states=("paid", "cancelled", "written_off"),
)
