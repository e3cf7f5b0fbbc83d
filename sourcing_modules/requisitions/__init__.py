"""
Requisitions Module.

Internal demand: required product lines with their purchased and pending
counters, and the ledger that reconciles those counters as purchase orders
move through their lifecycle.
"""

from sourcing_modules.requisitions.ledger import RequisitionLedger
from sourcing_modules.requisitions.models import (
    LedgerEntry,
    LedgerEntryKind,
    LedgerOutcome,
    OrderLineQuantities,
    RequiredProductLine,
    RequiredProductLineInput,
    Requisition,
    RequisitionStatus,
)
from sourcing_modules.requisitions.service import RequisitionService
from sourcing_modules.requisitions.workflows import REQUISITION_WORKFLOW

__all__ = [
    "LedgerEntry",
    "LedgerEntryKind",
    "LedgerOutcome",
    "OrderLineQuantities",
    "REQUISITION_WORKFLOW",
    "RequiredProductLine",
    "RequiredProductLineInput",
    "Requisition",
    "RequisitionLedger",
    "RequisitionService",
    "RequisitionStatus",
]
