"""Tests for the declared lifecycles and the workflow primitives."""

import pytest

from costcontrol_kernel.domain.workflow import Transition, Workflow
from costcontrol_modules.budget.workflows import BUDGET_VERSION_WORKFLOW
from costcontrol_modules.certification import CERTIFICATION_WORKFLOW


class TestBudgetVersionWorkflow:

    def test_forward_path(self):
        assert BUDGET_VERSION_WORKFLOW.find_transition("draft", "baseline") is not None
        assert BUDGET_VERSION_WORKFLOW.find_transition("baseline", "approved") is not None

    def test_no_skip_and_no_return(self):
        assert BUDGET_VERSION_WORKFLOW.find_transition("draft", "approved") is None
        assert BUDGET_VERSION_WORKFLOW.is_reachable("draft", "approved")
        assert not BUDGET_VERSION_WORKFLOW.is_reachable("baseline", "draft")

    def test_only_approval_is_gated(self):
        gated = [t.action for t in BUDGET_VERSION_WORKFLOW.transitions if t.requires_authorization]
        assert gated == ["approve"]


class TestCertificationWorkflow:

    def test_decisions_follow_issue(self):
        assert CERTIFICATION_WORKFLOW.find_transition("draft", "issued") is not None
        assert CERTIFICATION_WORKFLOW.find_transition("issued", "approved") is not None
        assert CERTIFICATION_WORKFLOW.find_transition("issued", "rejected") is not None

    def test_terminal_states(self):
        assert set(CERTIFICATION_WORKFLOW.terminal_states) == {"approved", "rejected"}
        assert not CERTIFICATION_WORKFLOW.is_reachable("approved", "rejected")


class TestDefinitionChecks:

    def test_undeclared_state(self):
        with pytest.raises(ValueError):
            Workflow("w", "", "a", ("a",), (Transition("a", "b", action="go"),))

    def test_terminal_state_with_exit(self):
        with pytest.raises(ValueError):
            Workflow(
                "w", "", "a", ("a", "b"),
                (Transition("a", "b", action="go"), Transition("b", "a", action="back")),
                terminal_states=("b",),
            )

    def test_gated_transition_needs_action_name(self):
        with pytest.raises(ValueError):
            Workflow(
                "w", "", "a", ("a", "b"),
                (Transition("a", "b", action="go", requires_authorization=True),),
            )
