"""
Quotation Domain Models.

Supplier price quotes requested against a requisition, and the offers they
carry per product.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sourcing_kernel.domain.values import AdditionalCost
from sourcing_kernel.logging_config import get_logger

logger = get_logger("modules.quotations.models")

ZERO = Decimal("0")


class QuotationStatus(str, Enum):
    """Quotation lifecycle states."""
    SENT = "Sent"
    RECEIVED = "Received"
    PARTIALLY_AWARDED = "PartiallyAwarded"
    AWARDED = "Awarded"
    REJECTED = "Rejected"
    LOST = "Lost"


@dataclass(frozen=True)
class ReceivedOfferInput:
    """A supplier's answer for one requested product."""
    product_id: str
    quoted_quantity: Decimal
    unit_price_quoted: Decimal
    estimated_delivery_date: date | None = None
    conditions: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Offer:
    """One supplier's quoted quantity and price for one product."""
    id: UUID
    quotation_id: UUID
    product_id: str
    required_quantity: Decimal
    quoted_quantity: Decimal = ZERO
    unit_price_quoted: Decimal = ZERO
    awarded_quantity: Decimal = ZERO
    estimated_delivery_date: date | None = None
    product_name: str = ""
    conditions: str | None = None
    notes: str | None = None

    @property
    def subtotal(self) -> Decimal:
        return self.quoted_quantity * self.unit_price_quoted


@dataclass(frozen=True)
class Quotation:
    """A supplier quote for a subset of a requisition's products."""
    id: UUID
    requisition_id: UUID
    supplier_id: str
    status: QuotationStatus
    version: int
    request_date: datetime
    response_deadline: date | None = None
    received_date: datetime | None = None
    shipping_conditions: str | None = None
    notes: str | None = None
    additional_costs: tuple[AdditionalCost, ...] = ()
    products_subtotal: Decimal = ZERO
    total_amount: Decimal = ZERO
    offers: tuple[Offer, ...] = field(default_factory=tuple)

    def offer_for(self, product_id: str) -> Offer | None:
        for offer in self.offers:
            if offer.product_id == product_id:
                return offer
        return None


@dataclass(frozen=True)
class OfferAward:
    """Quantity awarded against one offer within an award batch."""
    quotation_id: UUID
    product_id: str
    quantity: Decimal
    offer_id: UUID | None = None


@dataclass(frozen=True)
class QuotationStatusChange:
    """Status change applied to a quotation during award propagation."""
    quotation_id: UUID
    before: QuotationStatus
    after: QuotationStatus
