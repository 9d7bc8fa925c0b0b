"""
Pure domain layer.

Value objects and seams with NO dependency on the ORM, the database or
wall-clock time: clocks, id generators, workflow definitions and the
access-policy protocol.
"""

from costcontrol_kernel.domain.access import AccessPolicy
from costcontrol_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from costcontrol_kernel.domain.identity import (
    IdGenerator,
    SequentialIdGenerator,
    UUID4Generator,
)
from costcontrol_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "AccessPolicy",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "IdGenerator",
    "SequentialIdGenerator",
    "UUID4Generator",
    "Guard",
    "Transition",
    "Workflow",
]
