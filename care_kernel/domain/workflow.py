"""
Canonical workflow types (``care_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for entity lifecycle state machines (payroll runs,
bills, budgets, ledger accounts, medication records, pilots).  Services
ask the workflow which transition an action maps to instead of
hard-coding ``if status == ...`` ladders.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* An action not defined from the current state raises
  ``InvalidTransitionError`` (HTTP 409).
"""

from __future__ import annotations

from dataclasses import dataclass

from care_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only: the owning service evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for an entity lifecycle.

    ``terminal_states`` are states with no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self):
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} references unknown state"
                )

    def can(self, state: str, action: str) -> bool:
        return any(
            t.from_state == state and t.action == action for t in self.transitions
        )

    def transition_for(self, state: str, action: str) -> Transition:
        """Return the transition for ``action`` from ``state``.

        Raises:
            InvalidTransitionError: if no such transition exists.
        """
        for t in self.transitions:
            if t.from_state == state and t.action == action:
                return t
        raise InvalidTransitionError(self.name, state, action)

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)
