"""
costcontrol_services.rbac_authority -- Config-driven access policy.

Responsibility:
    Answer ``is_authorized_for(actor, action)`` for the gated transitions
    (budget version approval, certification approval and rejection) from
    the role -> permission map in ``CostControlConfig`` and the actor's
    roles.

Architecture position:
    Services layer.  Implements the kernel ``AccessPolicy`` protocol; the
    module services receive an instance by injection.

Invariants:
    - The core does not resolve actor identity.  The caller supplies a
      role provider (mapping or callable) that returns an actor's roles.
    - Actions outside ``GATED_ACTIONS`` are denied, so a typo in an
      action name fails closed.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from uuid import UUID

from costcontrol_config.schema import CostControlConfig
from costcontrol_kernel.domain.access import GATED_ACTIONS
from costcontrol_kernel.logging_config import get_logger

logger = get_logger("services.rbac")

RoleProvider = Callable[[UUID], tuple[str, ...]]


def check_rbac(
    config: CostControlConfig,
    assigned_roles: tuple[str, ...],
    action: str,
) -> tuple[bool, str]:
    """
    Check whether roles grant ``action``.

    Returns:
        (allowed, reason).  reason is empty when allowed.
    """
    if action not in GATED_ACTIONS:
        return (False, f"RBAC: unknown action '{action}'")
    if not assigned_roles:
        return (False, "RBAC: actor has no roles")
    if action not in config.permissions_for(assigned_roles):
        return (False, f"RBAC: none of {sorted(assigned_roles)} grants '{action}'")
    return (True, "")


class RoleBasedAccessPolicy:
    """``AccessPolicy`` backed by config roles and a role provider."""

    def __init__(
        self,
        config: CostControlConfig,
        roles: Mapping[UUID, tuple[str, ...]] | RoleProvider,
    ):
        self._config = config
        if callable(roles):
            self._roles_of: RoleProvider = roles
        else:
            role_map = dict(roles)
            self._roles_of = lambda actor_id: tuple(role_map.get(actor_id, ()))

    def is_authorized_for(self, actor_id: UUID, action: str) -> bool:
        allowed, reason = check_rbac(self._config, self._roles_of(actor_id), action)
        if not allowed:
            logger.warning(
                "authorization_denied",
                extra={"actor_id": str(actor_id), "action": action, "reason": reason},
            )
        return allowed
