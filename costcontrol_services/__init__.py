"""Cross-module collaborators (access policy)."""

from costcontrol_services.rbac_authority import RoleBasedAccessPolicy, check_rbac

__all__ = ["RoleBasedAccessPolicy", "check_rbac"]
