"""
Access control seam consumed by the core.

The core never resolves actors or roles itself.  It asks an injected
``AccessPolicy`` whether an actor may perform a named action and raises
``AuthorizationError`` on denial.
"""

from typing import Protocol, runtime_checkable
from uuid import UUID

APPROVE_BUDGET_VERSION = "budget_version.approve"
APPROVE_CERTIFICATION = "certification.approve"
REJECT_CERTIFICATION = "certification.reject"

GATED_ACTIONS: tuple[str, ...] = (
    APPROVE_BUDGET_VERSION,
    APPROVE_CERTIFICATION,
    REJECT_CERTIFICATION,
)


@runtime_checkable
class AccessPolicy(Protocol):
    """``is_authorized_for(actor, action) -> bool``."""

    def is_authorized_for(self, actor_id: UUID, action: str) -> bool:
        ...

