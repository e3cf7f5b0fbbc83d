"""
Quotation Workflow.

Sent and Received are operator-driven; the award statuses and Lost are set
only by award propagation.
"""

from sourcing_kernel.domain.workflow import Guard, Transition, Workflow
from sourcing_kernel.logging_config import get_logger

logger = get_logger("modules.quotations.workflows")


EVERY_QUOTED_OFFER_AWARDED = Guard(
    name="every_quoted_offer_awarded",
    description="Every offer with quoted quantity > 0 has awarded quantity > 0",
)

NOT_IN_AWARD_BATCH = Guard(
    name="not_in_award_batch",
    description="No accepted offer of the award batch references this quotation",
)


QUOTATION_WORKFLOW = Workflow(
    name="quotation",
    description="Supplier quotation from request to award",
    initial_state="Sent",
    states=(
        "Sent",
        "Received",
        "PartiallyAwarded",
        "Awarded",
        "Rejected",
        "Lost",
    ),
    transitions=(
        Transition("Sent", "Received", action="receive"),
        Transition("Sent", "Rejected", action="reject"),
        Transition("Received", "Rejected", action="reject"),
        Transition("Received", "PartiallyAwarded", action="award", derived=True),
        Transition("Received", "Awarded", action="award", guard=EVERY_QUOTED_OFFER_AWARDED, derived=True),
        Transition("PartiallyAwarded", "Awarded", action="award", guard=EVERY_QUOTED_OFFER_AWARDED, derived=True),
        Transition("Received", "Lost", action="lose", guard=NOT_IN_AWARD_BATCH, derived=True),
        Transition("PartiallyAwarded", "Lost", action="lose", guard=NOT_IN_AWARD_BATCH, derived=True),
    ),
    terminal_states=("Awarded", "Rejected", "Lost"),
)

# Quotation statuses a new offer set may be recorded in.
RECEIVABLE_STATUSES = ("Sent", "Received")

logger.debug(
    "quotation_workflow_registered",
    extra={
        "workflow_name": QUOTATION_WORKFLOW.name,
        "state_count": len(QUOTATION_WORKFLOW.states),
        "transition_count": len(QUOTATION_WORKFLOW.transitions),
    },
)
