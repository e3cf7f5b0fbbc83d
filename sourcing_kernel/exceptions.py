"""
Typed Exception Hierarchy for the Sourcing Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from SourcingKernelError:

    SourcingKernelError (base)
    |
    +-- ValidationError                 rejected pre-mutation, recoverable
    |   +-- InvalidQuantityError
    |   +-- InvalidPriceError
    |   +-- InactiveReferenceError
    |   +-- RequisitionNotFoundError
    |   +-- QuotationNotFoundError
    |   +-- PurchaseOrderNotFoundError
    |   +-- InvalidTransitionError
    |   +-- AwardValidationError
    |
    +-- ConflictError                   retries exhausted; caller retries
    |   +-- OptimisticLockError
    |
    +-- ConsistencyViolation            accounting identity would break
    |   +-- ReceiptOverageError
    |   +-- AuditChainBrokenError
    |
    +-- PartialFailure                  award commit stopped mid-way

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Malformed input
                | INVALID_QUANTITY            | Quantity <= 0 (or negative delta)
                | INVALID_PRICE               | Negative unit price
                | INACTIVE_REFERENCE          | Product/supplier/warehouse missing or inactive
                | REQUISITION_NOT_FOUND       | Unknown requisition id
                | QUOTATION_NOT_FOUND         | Unknown quotation id
                | PURCHASE_ORDER_NOT_FOUND    | Unknown purchase order id
                | INVALID_TRANSITION          | Status change not allowed from current state
                | AWARD_INVALID               | Accepted offer inconsistent with its quotation
----------------|-----------------------------|-----------------------------------------
Conflict        | CONFLICT                    | Generic optimistic-concurrency failure
                | OPTIMISTIC_LOCK_CONFLICT    | Retries exhausted on one aggregate
----------------|-----------------------------|-----------------------------------------
Consistency     | CONSISTENCY_VIOLATION       | Invariant would be broken
                | RECEIPT_OVERAGE             | received+damaged+missing > ordered
                | AUDIT_CHAIN_BROKEN          | Audit hash chain does not verify
----------------|-----------------------------|-----------------------------------------
Award           | PARTIAL_FAILURE             | Some purchase orders created before failure

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        result = receiving.apply_receipt(event, actor)
    except ReceiptOverageError as e:
        reject(code=e.code, line=e.po_line_id, ordered=e.ordered_quantity)
    except ConflictError:
        retry_later()

Expected business outcomes (duplicate receipt, over-order not acknowledged,
partial award commit) are returned as structured results, not raised.  Only
the boundary that owns the result converts these exceptions into a result.
"""

from decimal import Decimal
from uuid import UUID


class SourcingKernelError(Exception):
    """
    Base exception for all sourcing kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SOURCING_KERNEL_ERROR"


# Validation


class ValidationError(SourcingKernelError):
    """Input rejected before any mutation."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantity is not strictly positive (or a delta is negative)."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, quantity: Decimal, reason: str = "must be positive"):
        self.field = field
        self.quantity = quantity
        super().__init__(f"Invalid {field} {quantity}: {reason}")


class InvalidPriceError(ValidationError):
    """Unit price is negative."""

    code: str = "INVALID_PRICE"

    def __init__(self, product_id: str, unit_price: Decimal):
        self.product_id = product_id
        self.unit_price = unit_price
        super().__init__(f"Invalid unit price {unit_price} for product {product_id}")


class InactiveReferenceError(ValidationError):
    """Master-data reference does not exist or is inactive."""

    code: str = "INACTIVE_REFERENCE"

    def __init__(self, kind: str, reference_id: str, exists: bool):
        self.kind = kind
        self.reference_id = reference_id
        self.exists = exists
        state = "is inactive" if exists else "does not exist"
        super().__init__(f"{kind} {reference_id} {state}")


class RequisitionNotFoundError(ValidationError):
    """Requisition with given ID was not found."""

    code: str = "REQUISITION_NOT_FOUND"

    def __init__(self, requisition_id: UUID):
        self.requisition_id = requisition_id
        super().__init__(f"Requisition not found: {requisition_id}")


class QuotationNotFoundError(ValidationError):
    """Quotation with given ID was not found."""

    code: str = "QUOTATION_NOT_FOUND"

    def __init__(self, quotation_id: UUID):
        self.quotation_id = quotation_id
        super().__init__(f"Quotation not found: {quotation_id}")


class PurchaseOrderNotFoundError(ValidationError):
    """Purchase order with given ID was not found."""

    code: str = "PURCHASE_ORDER_NOT_FOUND"

    def __init__(self, purchase_order_id: UUID):
        self.purchase_order_id = purchase_order_id
        super().__init__(f"Purchase order not found: {purchase_order_id}")


class InvalidTransitionError(ValidationError):
    """Requested status change is not allowed from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, entity_id: UUID, from_state: str, to_state: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"{entity_type} {entity_id}: transition {from_state} -> {to_state} not allowed"
        )


class AwardValidationError(ValidationError):
    """Accepted offer is inconsistent with the requisition or its quotation."""

    code: str = "AWARD_INVALID"

    def __init__(self, product_id: str, quotation_id: UUID | None, reason: str):
        self.product_id = product_id
        self.quotation_id = quotation_id
        self.reason = reason
        super().__init__(
            f"Accepted offer for product {product_id} "
            f"(quotation {quotation_id}) rejected: {reason}"
        )


# Concurrency


class ConflictError(SourcingKernelError):
    """Optimistic-concurrency retries exhausted."""

    code: str = "CONFLICT"


class OptimisticLockError(ConflictError):
    """Aggregate was modified by another transaction on every attempt."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: UUID | str, attempts: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"gave up after {attempts} attempts"
        )


# Consistency


class ConsistencyViolation(SourcingKernelError):
    """An accounting identity would be broken; never clamped."""

    code: str = "CONSISTENCY_VIOLATION"


class ReceiptOverageError(ConsistencyViolation):
    """Receipt would account for more than the ordered quantity."""

    code: str = "RECEIPT_OVERAGE"

    def __init__(
        self,
        po_line_id: UUID,
        ordered_quantity: Decimal,
        accounted_quantity: Decimal,
    ):
        self.po_line_id = po_line_id
        self.ordered_quantity = ordered_quantity
        self.accounted_quantity = accounted_quantity
        super().__init__(
            f"Receipt overage on line {po_line_id}: "
            f"{accounted_quantity} accounted > {ordered_quantity} ordered"
        )


# Award commit


class PartialFailure(SourcingKernelError):
    """Award commit created some purchase orders before failing."""

    code: str = "PARTIAL_FAILURE"

    def __init__(
        self,
        created_purchase_order_ids: tuple[UUID, ...],
        failed_supplier_id: str | None,
        cause: SourcingKernelError,
    ):
        self.created_purchase_order_ids = created_purchase_order_ids
        self.failed_supplier_id = failed_supplier_id
        self.cause_code = cause.code
        super().__init__(
            f"Award commit stopped after {len(created_purchase_order_ids)} "
            f"purchase order(s): {cause}"
        )


# Audit


class AuditChainBrokenError(ConsistencyViolation):
    """Audit hash chain validation failed for an aggregate."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, aggregate_type: str, aggregate_id: UUID, seq: int):
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self.seq = seq
        super().__init__(
            f"Audit chain broken for {aggregate_type} {aggregate_id} at seq {seq}"
        )
