"""
Purchase Orders Module.

Orders placed with suppliers, their manual lifecycle, line edits and
supplier solutions, and the requisition reconciliation each transition
triggers.
"""

from sourcing_modules.purchase_orders.models import (
    POStatus,
    POTransitionResult,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseOrderLineInput,
    SupplierSolutionType,
)
from sourcing_modules.purchase_orders.service import PurchaseOrderService
from sourcing_modules.purchase_orders.workflows import PURCHASE_ORDER_WORKFLOW

__all__ = [
    "POStatus",
    "POTransitionResult",
    "PURCHASE_ORDER_WORKFLOW",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "PurchaseOrderLineInput",
    "PurchaseOrderService",
    "SupplierSolutionType",
]
