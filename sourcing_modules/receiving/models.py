"""
Receiving Domain Models.

Receipt events recorded against confirmed purchase orders and the outcome
of applying them.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sourcing_kernel.domain.collaborators import StockCondition
from sourcing_kernel.logging_config import get_logger
from sourcing_modules.purchase_orders.models import POStatus
from sourcing_modules.requisitions.models import LedgerOutcome

logger = get_logger("modules.receiving.models")

ZERO = Decimal("0")


class ReceiptApplyStatus(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


@dataclass(frozen=True)
class ReceiptLineInput:
    """Quantities counted against one purchase order line."""
    po_line_id: UUID
    ok_quantity: Decimal = ZERO
    damaged_quantity: Decimal = ZERO
    missing_quantity: Decimal = ZERO


@dataclass(frozen=True)
class ReceiptEventInput:
    """
    A receipt as reported by the receiving desk.

    ``event_id`` is chosen by the caller; re-submitting the same id is a
    no-op.
    """
    event_id: UUID
    purchase_order_id: UUID
    receipt_date: date
    receiving_user_id: UUID
    target_warehouse_id: str
    lines: tuple[ReceiptLineInput, ...]
    notes: str | None = None


@dataclass(frozen=True)
class StockMovement:
    """One stock ledger booking made for a receipt line."""
    po_line_id: UUID
    product_id: str
    condition: StockCondition
    quantity: Decimal
    quantity_before: Decimal
    quantity_after: Decimal


@dataclass(frozen=True)
class ReceiptResult:
    """Outcome of ``ReceivingService.apply_receipt``."""
    event_id: UUID
    purchase_order_id: UUID
    status: ReceiptApplyStatus
    purchase_order_status: POStatus
    stock_movements: tuple[StockMovement, ...] = field(default_factory=tuple)
    requisition_outcome: LedgerOutcome | None = None
    anomaly: str | None = None
    message: str = ""

    @property
    def is_success(self) -> bool:
        return self.status in (ReceiptApplyStatus.APPLIED, ReceiptApplyStatus.ALREADY_APPLIED)

    @property
    def was_applied(self) -> bool:
        return self.status == ReceiptApplyStatus.APPLIED
