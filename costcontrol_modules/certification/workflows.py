"""Certification Workflows.

State machine for the progress certification lifecycle.
"""

from costcontrol_kernel.domain.access import APPROVE_CERTIFICATION, REJECT_CERTIFICATION
from costcontrol_kernel.domain.workflow import Guard, Transition, Workflow
from costcontrol_kernel.logging_config import get_logger

logger = get_logger("modules.certification.workflows")


HAS_CERTIFICATION_LINES = Guard("has_certification_lines", "Certification bills at least one line")

CERTIFICATION_WORKFLOW = Workflow(
    name="certification",
    description="Progress certification lifecycle",
    initial_state="draft",
    states=("draft", "issued", "approved", "rejected"),
    transitions=(
        Transition(
            "draft", "issued",
            action="issue",
            guard=HAS_CERTIFICATION_LINES,
            event_type="certification.issued",
        ),
        Transition(
            "issued", "approved",
            action="approve",
            requires_authorization=True,
            authorization_action=APPROVE_CERTIFICATION,
            event_type="certification.approved",
        ),
        Transition(
            "issued", "rejected",
            action="reject",
            requires_authorization=True,
            authorization_action=REJECT_CERTIFICATION,
            event_type="certification.rejected",
        ),
    ),
    terminal_states=("approved", "rejected"),
)

logger.info("certification_workflow_registered", extra={
    "workflow_name": CERTIFICATION_WORKFLOW.name,
    "state_count": len(CERTIFICATION_WORKFLOW.states),
})
