"""
Idempotency key generation utilities.

Idempotency keys let a retried operation recognise the work it already did
instead of repeating it: an award batch must not duplicate purchase orders.
"""

from typing import Any
from uuid import UUID

from sourcing_kernel.utils.hashing import hash_payload


def derive_award_batch_id(requisition_id: UUID, offers: list[dict[str, Any]]) -> str:
    """
    Derive a deterministic award batch id from the accepted offers.

    The same requisition and the same accepted-offer set (in any order)
    always produce the same id, so a blind retry of a commit is recognised.

    Example:
        >>> derive_award_batch_id(req_id, [{"supplier_id": "S1", "quotation_id": q, "product_id": "P1"}])
        "award-3f0c..."
    """
    ordered = sorted(offers, key=lambda o: (str(o["supplier_id"]), str(o["quotation_id"]), str(o["product_id"])))
    digest = hash_payload({"requisition_id": requisition_id, "offers": ordered})
    return f"award-{digest[:32]}"
