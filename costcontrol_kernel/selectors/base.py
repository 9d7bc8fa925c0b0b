"""
Module: costcontrol_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors (the "Q"
    side of the reporting surface).
Architecture position: Kernel > Selectors.  Module selectors extend this.

Invariants enforced:
    - Read-only access: selectors MUST NOT add, delete, flush or commit.
    - DTO return convention: selectors return frozen dataclasses, never
      ORM instances.
    - Stored values are authoritative: selectors sum stored columns and
      never re-derive markups or billing amounts on read.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Accepts a Session from the caller, performs read-only queries, and
        returns DTOs.  The caller owns the session and its transaction.
    """

    def __init__(self, session: Session):
        self.session = session
