"""
Requisition Domain Models.

The nouns of demand: requisitions, their required product lines, and the
ledger entries recording each counter reconciliation applied to them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sourcing_kernel.logging_config import get_logger

logger = get_logger("modules.requisitions.models")

ZERO = Decimal("0")


class RequisitionStatus(str, Enum):
    """Requisition lifecycle states."""
    PENDING_QUOTATION = "PendingQuotation"
    QUOTED = "Quoted"
    PO_IN_PROGRESS = "POInProgress"
    COMPLETED = "Completed"
    CANCELED = "Canceled"


class LedgerEntryKind(str, Enum):
    """Reconciliation steps that move requisition counters."""
    AWARD = "award"
    CONFIRMATION = "confirmation"
    RECEIPT = "receipt"
    REVERSAL = "reversal"
    AMENDMENT = "amendment"


@dataclass(frozen=True)
class RequiredProductLineInput:
    """Caller input for one line of a new requisition."""
    product_id: str
    required_quantity: Decimal
    product_name: str = ""
    notes: str | None = None


@dataclass(frozen=True)
class RequiredProductLine:
    """A product and quantity a requisition needs, with its two counters."""
    id: UUID
    requisition_id: UUID
    product_id: str
    required_quantity: Decimal
    purchased_quantity: Decimal = ZERO
    pending_po_quantity: Decimal = ZERO
    product_name: str = ""
    notes: str | None = None

    @property
    def net_remaining(self) -> Decimal:
        return max(ZERO, self.required_quantity - self.purchased_quantity - self.pending_po_quantity)

    @property
    def is_satisfied(self) -> bool:
        return self.purchased_quantity >= self.required_quantity


@dataclass(frozen=True)
class Requisition:
    """An internal request enumerating required products and quantities."""
    id: UUID
    requesting_user_id: UUID
    status: RequisitionStatus
    version: int
    notes: str | None = None
    lines: tuple[RequiredProductLine, ...] = field(default_factory=tuple)

    def line_for(self, product_id: str) -> RequiredProductLine | None:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None


@dataclass(frozen=True)
class OrderLineQuantities:
    """Quantities of one purchase order line, as the requisition ledger sees them."""
    product_id: str
    ordered: Decimal
    received: Decimal = ZERO
    damaged: Decimal = ZERO
    missing: Decimal = ZERO

    @property
    def net_outstanding(self) -> Decimal:
        return self.ordered - self.received - self.damaged - self.missing


@dataclass(frozen=True)
class LedgerEntry:
    """One applied reconciliation step."""
    id: UUID
    requisition_id: UUID
    kind: LedgerEntryKind
    source_key: str
    deltas: dict[str, Any]
    applied_at: datetime
    actor_id: UUID


@dataclass(frozen=True)
class LedgerOutcome:
    """Effect of one ledger step on a requisition."""
    requisition_id: UUID
    kind: LedgerEntryKind
    source_key: str
    applied: bool
    status_before: RequisitionStatus
    status_after: RequisitionStatus
    pending_deltas: dict[str, Decimal] = field(default_factory=dict)
    purchased_deltas: dict[str, Decimal] = field(default_factory=dict)
    over_fulfilled_products: tuple[str, ...] = ()

    @property
    def status_changed(self) -> bool:
        return self.status_before != self.status_after
