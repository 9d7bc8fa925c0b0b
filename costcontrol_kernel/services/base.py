"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor and session contract for services in
    ``costcontrol_kernel/services``.  They use ``session.flush()`` and
    never ``session.commit()``; the module service that calls them owns
    the transaction.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from costcontrol_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``; the caller controls the transaction.

    Non-goals:
        - Read-only queries belong in selectors.
    """

    def __init__(self, session: Session):
        self.session = session
