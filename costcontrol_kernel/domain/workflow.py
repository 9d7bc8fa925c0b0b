"""
Canonical workflow types (``costcontrol_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  Budget versions and
certifications both declare their lifecycle as a ``Workflow`` constant;
services look transitions up here instead of hard-coding ``if`` chains.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* When ``requires_authorization=True``, ``authorization_action`` names the
  action passed to the access policy.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does.
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
    requires_authorization: bool = False
    authorization_action: str | None = None
    event_type: str | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} references "
                    "an undeclared state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    "has an outgoing transition"
                )
            if t.requires_authorization and not t.authorization_action:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} requires "
                    "authorization but names no action"
                )

    def find_transition(self, from_state: str, to_state: str) -> Transition | None:
        """Return the declared transition between two states, if any."""
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def is_reachable(self, from_state: str, to_state: str) -> bool:
        """True if ``to_state`` can be reached from ``from_state`` by any path."""
        seen = {from_state}
        frontier = [from_state]
        while frontier:
            state = frontier.pop()
            for t in self.transitions:
                if t.from_state == state and t.to_state not in seen:
                    if t.to_state == to_state:
                        return True
                    seen.add(t.to_state)
                    frontier.append(t.to_state)
        return False
