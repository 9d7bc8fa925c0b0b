"""
Identity -- injectable id generation.

Responsibility:
    New rows (copied lines, certification lines, outbox events) take their
    ids from an IdGenerator so tests can pin them.  ORM defaults still
    assign uuid4 when a caller supplies nothing.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
"""

from abc import ABC, abstractmethod
from uuid import UUID, uuid4


class IdGenerator(ABC):
    """Source of new entity identifiers."""

    @abstractmethod
    def new_id(self) -> UUID:
        ...


class UUID4Generator(IdGenerator):
    """Random uuid4 ids (production default)."""

    def new_id(self) -> UUID:
        return uuid4()


class SequentialIdGenerator(IdGenerator):
    """
    Predictable ids for tests: 00000000-0000-4000-8000-000000000001, ...

    Guarantees:
        - Ids are unique per instance and increase monotonically.
    """

    def __init__(self, start: int = 1):
        self._next = start

    def new_id(self) -> UUID:
        value = self._next
        self._next += 1
        return UUID(f"00000000-0000-4000-8000-{value:012d}")
