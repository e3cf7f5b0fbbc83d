"""
Award Domain Models.

Accepted offers as submitted by the operator, and the result of committing
them.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sourcing_engines.offer_selection import SuggestedAward
from sourcing_kernel.logging_config import get_logger
from sourcing_modules.quotations.models import QuotationStatusChange
from sourcing_modules.requisitions.models import LedgerOutcome

logger = get_logger("modules.awards.models")


@dataclass(frozen=True)
class AcceptedOffer:
    """An offer the operator accepted, possibly with an edited quantity."""
    product_id: str
    quotation_id: UUID
    supplier_id: str
    awarded_quantity: Decimal
    unit_price: Decimal
    estimated_delivery_date: date | None = None
    offer_id: UUID | None = None

    @classmethod
    def coerce(cls, value: "AcceptedOffer | SuggestedAward") -> "AcceptedOffer":
        if isinstance(value, cls):
            return value
        return cls(
            product_id=value.product_id,
            quotation_id=value.quotation_id,
            supplier_id=value.supplier_id,
            awarded_quantity=value.awarded_quantity,
            unit_price=value.unit_price,
            estimated_delivery_date=value.estimated_delivery_date,
            offer_id=value.offer_id,
        )

    def key_dict(self) -> dict[str, Any]:
        """Canonical form used to derive the award batch id."""
        return {
            "product_id": self.product_id,
            "quotation_id": str(self.quotation_id),
            "supplier_id": self.supplier_id,
            "awarded_quantity": self.awarded_quantity,
            "unit_price": self.unit_price,
            "offer_id": str(self.offer_id) if self.offer_id else None,
        }


class AwardCommitStatus(str, Enum):
    """Outcome of an award commit."""
    COMMITTED = "committed"
    ALREADY_COMMITTED = "already_committed"
    VALIDATION_FAILED = "validation_failed"
    OVER_ORDER_NOT_ACKNOWLEDGED = "over_order_not_acknowledged"
    PARTIAL_FAILURE = "partial_failure"


@dataclass(frozen=True)
class AwardCommitResult:
    """
    Result of ``AwardService.commit_awards``.

    On PARTIAL_FAILURE, ``purchase_order_ids`` lists the orders that exist
    for the batch; re-submitting the same batch reuses them.
    """
    status: AwardCommitStatus
    requisition_id: UUID
    award_batch_id: str
    purchase_order_ids: tuple[UUID, ...] = ()
    over_ordered_products: tuple[str, ...] = ()
    failed_supplier_id: str | None = None
    error_code: str | None = None
    message: str = ""
    requisition_outcome: LedgerOutcome | None = None
    quotation_changes: tuple[QuotationStatusChange, ...] = ()

    @property
    def is_success(self) -> bool:
        return self.status in (AwardCommitStatus.COMMITTED, AwardCommitStatus.ALREADY_COMMITTED)
