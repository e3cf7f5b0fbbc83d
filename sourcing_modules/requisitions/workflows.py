"""
Requisition Workflow.

Requisition status is mostly derived from its counters by the requisition
ledger; this table lists every status change the ledger or the requisition
service may perform.
"""

from sourcing_kernel.domain.workflow import Guard, Transition, Workflow
from sourcing_kernel.logging_config import get_logger

logger = get_logger("modules.requisitions.workflows")


NO_OUTSTANDING_ORDERS = Guard(
    name="no_outstanding_orders",
    description="No line has pending purchase order quantity",
)

UNMET_DEMAND = Guard(
    name="unmet_demand",
    description="Some line has purchased + pending below required",
)

ALL_LINES_PURCHASED = Guard(
    name="all_lines_purchased",
    description="Every line has purchased >= required",
)


REQUISITION_WORKFLOW = Workflow(
    name="requisition",
    description="Requisition lifecycle driven by quotations, awards and reconciliation",
    initial_state="PendingQuotation",
    states=(
        "PendingQuotation",
        "Quoted",
        "POInProgress",
        "Completed",
        "Canceled",
    ),
    transitions=(
        Transition("PendingQuotation", "Quoted", action="request_quotation"),
        Transition("PendingQuotation", "Canceled", action="cancel", guard=NO_OUTSTANDING_ORDERS),
        Transition("Quoted", "Canceled", action="cancel", guard=NO_OUTSTANDING_ORDERS),
        Transition("Quoted", "POInProgress", action="award", derived=True),
        Transition("Quoted", "Completed", action="reconcile", guard=ALL_LINES_PURCHASED, derived=True),
        Transition("POInProgress", "Completed", action="reconcile", guard=ALL_LINES_PURCHASED, derived=True),
        Transition("POInProgress", "Quoted", action="reverse", guard=UNMET_DEMAND, derived=True),
        Transition("Completed", "Quoted", action="reverse", guard=UNMET_DEMAND, derived=True),
    ),
    terminal_states=("Canceled",),
)

logger.debug(
    "requisition_workflow_registered",
    extra={
        "workflow_name": REQUISITION_WORKFLOW.name,
        "state_count": len(REQUISITION_WORKFLOW.states),
        "transition_count": len(REQUISITION_WORKFLOW.transitions),
    },
)
