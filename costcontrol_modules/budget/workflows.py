"""Budget Workflows.

State machine for the budget version lifecycle.
"""

from costcontrol_kernel.domain.access import APPROVE_BUDGET_VERSION
from costcontrol_kernel.domain.workflow import Guard, Transition, Workflow
from costcontrol_kernel.logging_config import get_logger

logger = get_logger("modules.budget.workflows")


HAS_BUDGET_LINES = Guard("has_budget_lines", "Version carries at least one budget line")

BUDGET_VERSION_WORKFLOW = Workflow(
    name="budget_version",
    description="Budget version lifecycle",
    initial_state="draft",
    states=("draft", "baseline", "approved"),
    transitions=(
        Transition(
            "draft", "baseline",
            action="baseline",
            guard=HAS_BUDGET_LINES,
            event_type="budget_version.baselined",
        ),
        Transition(
            "baseline", "approved",
            action="approve",
            requires_authorization=True,
            authorization_action=APPROVE_BUDGET_VERSION,
            event_type="budget_version.approved",
        ),
    ),
    terminal_states=("approved",),
)

logger.info("budget_version_workflow_registered", extra={
    "workflow_name": BUDGET_VERSION_WORKFLOW.name,
    "state_count": len(BUDGET_VERSION_WORKFLOW.states),
})
