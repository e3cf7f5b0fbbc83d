"""
Purchase Order Workflow.

Manual transitions are requested by operators through
``PurchaseOrderService.transition``.  Derived transitions are set only by
receipt reconciliation and are refused when requested directly.
"""

from sourcing_kernel.domain.workflow import Guard, Transition, Workflow
from sourcing_kernel.logging_config import get_logger

logger = get_logger("modules.purchase_orders.workflows")


SOME_LINE_OUTSTANDING = Guard(
    name="some_line_outstanding",
    description="Some active line has received + damaged + missing < ordered",
)

ALL_ACCOUNTED_NONE_MISSING = Guard(
    name="all_accounted_none_missing",
    description="Every active line is fully accounted and none has missing quantity",
)

ALL_ACCOUNTED_SOME_MISSING = Guard(
    name="all_accounted_some_missing",
    description="Every active line is fully accounted and some line has missing quantity",
)

_RECEIVING_SOURCES = ("ConfirmedBySupplier", "PartiallyDelivered", "AwaitingFutureDelivery")

_DERIVED_TARGETS = (
    ("PartiallyDelivered", SOME_LINE_OUTSTANDING),
    ("FullyReceived", ALL_ACCOUNTED_NONE_MISSING),
    ("Completed", ALL_ACCOUNTED_SOME_MISSING),
)


PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Purchase order from placement through supplier confirmation and receiving",
    initial_state="Pending",
    states=(
        "Pending",
        "SentToSupplier",
        "ChangesProposedBySupplier",
        "PendingInternalReview",
        "ConfirmedBySupplier",
        "RejectedBySupplier",
        "PartiallyDelivered",
        "AwaitingFutureDelivery",
        "FullyReceived",
        "Completed",
        "Canceled",
    ),
    transitions=(
        Transition("Pending", "SentToSupplier", action="send"),
        Transition("Pending", "Canceled", action="cancel"),
        Transition("SentToSupplier", "ChangesProposedBySupplier", action="propose_changes"),
        Transition("SentToSupplier", "ConfirmedBySupplier", action="confirm"),
        Transition("SentToSupplier", "RejectedBySupplier", action="reject"),
        Transition("SentToSupplier", "Canceled", action="cancel"),
        Transition("ChangesProposedBySupplier", "PendingInternalReview", action="review"),
        Transition("ChangesProposedBySupplier", "SentToSupplier", action="resend"),
        Transition("ChangesProposedBySupplier", "ConfirmedBySupplier", action="confirm"),
        Transition("ChangesProposedBySupplier", "RejectedBySupplier", action="reject"),
        Transition("ChangesProposedBySupplier", "Canceled", action="cancel"),
        Transition("PendingInternalReview", "SentToSupplier", action="resend"),
        Transition("PendingInternalReview", "ConfirmedBySupplier", action="confirm"),
        Transition("PendingInternalReview", "RejectedBySupplier", action="reject"),
        Transition("PendingInternalReview", "Canceled", action="cancel"),
        Transition("ConfirmedBySupplier", "Canceled", action="cancel"),
        Transition("PartiallyDelivered", "AwaitingFutureDelivery", action="await_future_delivery"),
        Transition("PartiallyDelivered", "Canceled", action="cancel"),
        Transition("AwaitingFutureDelivery", "Canceled", action="cancel"),
        Transition("FullyReceived", "Canceled", action="cancel"),
    ) + tuple(
        Transition(source, target, action="receive", guard=guard, derived=True)
        for source in _RECEIVING_SOURCES
        for target, guard in _DERIVED_TARGETS
        if source != target
    ),
    terminal_states=("Completed", "Canceled", "RejectedBySupplier"),
)

# Statuses in which lines, costs and dates may be edited.
EDITABLE_STATUSES = (
    "Pending",
    "SentToSupplier",
    "ChangesProposedBySupplier",
    "PendingInternalReview",
)

# First edit in one of these statuses preserves the order as sent.
SNAPSHOT_STATUSES = ("SentToSupplier", "ChangesProposedBySupplier")

# Statuses in which a supplier solution may be recorded.
SOLUTION_STATUSES = ("PartiallyDelivered", "AwaitingFutureDelivery", "FullyReceived", "Completed")

# Entering one of these stamps completion_date.
COMPLETION_STATUSES = ("Completed", "Canceled", "RejectedBySupplier")

# Entering one of these reverses the order's effect on the requisition.
REVERSAL_STATUSES = ("Canceled", "RejectedBySupplier")

logger.debug(
    "purchase_order_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
    },
)
