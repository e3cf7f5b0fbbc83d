"""
Purchase Order Domain Models.

Orders placed with one supplier for a requisition, their lines with the
received/damaged/missing accounting, and the results of lifecycle
operations.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sourcing_kernel.domain.values import AdditionalCost
from sourcing_kernel.logging_config import get_logger
from sourcing_modules.requisitions.models import LedgerOutcome, OrderLineQuantities

logger = get_logger("modules.purchase_orders.models")

ZERO = Decimal("0")


class POStatus(str, Enum):
    """Purchase order lifecycle states."""
    PENDING = "Pending"
    SENT_TO_SUPPLIER = "SentToSupplier"
    CHANGES_PROPOSED_BY_SUPPLIER = "ChangesProposedBySupplier"
    PENDING_INTERNAL_REVIEW = "PendingInternalReview"
    CONFIRMED_BY_SUPPLIER = "ConfirmedBySupplier"
    REJECTED_BY_SUPPLIER = "RejectedBySupplier"
    PARTIALLY_DELIVERED = "PartiallyDelivered"
    AWAITING_FUTURE_DELIVERY = "AwaitingFutureDelivery"
    FULLY_RECEIVED = "FullyReceived"
    COMPLETED = "Completed"
    CANCELED = "Canceled"


class SupplierSolutionType(str, Enum):
    """How a supplier settles a short or imperfect delivery."""
    CREDIT_PARTIAL_CHARGE = "CreditPartialCharge"
    DISCOUNT_FOR_IMPERFECTION = "DiscountForImperfection"
    FUTURE_DELIVERY = "FutureDelivery"
    OTHER = "Other"


@dataclass(frozen=True)
class PurchaseOrderLineInput:
    """Caller input for one purchase order line."""
    product_id: str
    ordered_quantity: Decimal
    unit_price: Decimal
    product_name: str = ""
    notes: str | None = None
    source_offer_id: UUID | None = None


@dataclass(frozen=True)
class PurchaseOrderLine:
    """A product ordered on a purchase order and what has arrived of it."""
    id: UUID
    purchase_order_id: UUID
    line_number: int
    product_id: str
    ordered_quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    received_quantity: Decimal = ZERO
    received_damaged_quantity: Decimal = ZERO
    received_missing_quantity: Decimal = ZERO
    product_name: str = ""
    source_offer_id: UUID | None = None
    notes: str | None = None
    is_active: bool = True

    @property
    def accounted_quantity(self) -> Decimal:
        return self.received_quantity + self.received_damaged_quantity + self.received_missing_quantity

    @property
    def net_outstanding(self) -> Decimal:
        return self.ordered_quantity - self.accounted_quantity

    def to_quantities(self) -> OrderLineQuantities:
        return OrderLineQuantities(
            product_id=self.product_id,
            ordered=self.ordered_quantity,
            received=self.received_quantity,
            damaged=self.received_damaged_quantity,
            missing=self.received_missing_quantity,
        )


@dataclass(frozen=True)
class PurchaseOrder:
    """An order placed with one supplier."""
    id: UUID
    requisition_id: UUID
    supplier_id: str
    status: POStatus
    version: int
    order_date: datetime
    expected_delivery_date: date | None
    products_subtotal: Decimal
    total_amount: Decimal
    additional_costs: tuple[AdditionalCost, ...] = ()
    quotation_id: UUID | None = None
    award_batch_id: str | None = None
    notes: str | None = None
    completion_date: datetime | None = None
    confirmed_at: datetime | None = None
    revision: int = 0
    original_snapshot: dict[str, Any] | None = None
    supplier_solution_type: SupplierSolutionType | None = None
    supplier_solution_details: str | None = None
    lines: tuple[PurchaseOrderLine, ...] = field(default_factory=tuple)

    @property
    def active_lines(self) -> tuple[PurchaseOrderLine, ...]:
        return tuple(line for line in self.lines if line.is_active)

    def line_for(self, product_id: str) -> PurchaseOrderLine | None:
        for line in self.active_lines:
            if line.product_id == product_id:
                return line
        return None


@dataclass(frozen=True)
class POTransitionResult:
    """A lifecycle transition and its effect on the requisition counters."""
    purchase_order: PurchaseOrder
    from_status: POStatus
    to_status: POStatus
    requisition_outcomes: tuple[LedgerOutcome, ...] = ()

    @property
    def reconciled(self) -> bool:
        return bool(self.requisition_outcomes)
