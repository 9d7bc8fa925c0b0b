"""Tests for the config-backed role access policy."""

from uuid import uuid4

import pytest

from costcontrol_kernel.domain.access import (
    APPROVE_BUDGET_VERSION,
    APPROVE_CERTIFICATION,
    REJECT_CERTIFICATION,
)
from costcontrol_services.rbac_authority import RoleBasedAccessPolicy, check_rbac


@pytest.mark.parametrize("action", [APPROVE_BUDGET_VERSION, APPROVE_CERTIFICATION, REJECT_CERTIFICATION])
def test_project_manager_holds_every_gate(config, action):
    assert check_rbac(config, ("project_manager",), action) == (True, "")


def test_cost_controller_only_rejects(config):
    assert check_rbac(config, ("cost_controller",), REJECT_CERTIFICATION)[0]
    allowed, reason = check_rbac(config, ("cost_controller",), APPROVE_CERTIFICATION)
    assert not allowed
    assert "cost_controller" in reason


def test_roles_combine(config):
    assert check_rbac(config, ("estimator", "cost_controller"), REJECT_CERTIFICATION)[0]


def test_no_roles(config):
    assert check_rbac(config, (), APPROVE_BUDGET_VERSION) == (False, "RBAC: actor has no roles")


def test_unknown_action(config):
    allowed, reason = check_rbac(config, ("project_manager",), "budget_version.delete")
    assert not allowed
    assert "unknown action" in reason


class TestPolicy:

    def test_role_map(self, config):
        pm, stranger = uuid4(), uuid4()
        policy = RoleBasedAccessPolicy(config, {pm: ("project_manager",)})
        assert policy.is_authorized_for(pm, APPROVE_BUDGET_VERSION)
        assert not policy.is_authorized_for(stranger, APPROVE_BUDGET_VERSION)

    def test_role_provider(self, config):
        policy = RoleBasedAccessPolicy(config, lambda actor_id: ("cost_controller",))
        assert policy.is_authorized_for(uuid4(), REJECT_CERTIFICATION)

    def test_denial_is_logged(self, config, captured_logs):
        actor = uuid4()
        RoleBasedAccessPolicy(config, {}).is_authorized_for(actor, APPROVE_CERTIFICATION)
        [record] = [r for r in captured_logs() if r["message"] == "authorization_denied"]
        assert record["actor_id"] == str(actor)
        assert record["action"] == APPROVE_CERTIFICATION
