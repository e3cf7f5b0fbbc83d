"""
sourcing_engines.receipt_status -- Receipt accounting and status derivation.

Responsibility:
    Apply (ok, damaged, missing) receipt deltas to purchase order line
    quantities under the accounting identity, and derive the purchase
    order's receiving status from the resulting line quantities.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Used by
    ``sourcing_modules.receiving.service`` inside the receipt transaction.

Invariants enforced:
    - received + damaged + missing <= ordered for every line, always.
      Overage raises ReceiptOverageError; nothing is clamped.
    - Deltas are non-negative.

Status rules:
    - any line accounted < ordered        -> PartiallyDelivered
    - all accounted, none missing          -> FullyReceived
    - all accounted, some missing          -> Completed
    - no lines at all                      -> Completed (anomaly)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sourcing_engines.tracer import traced_engine
from sourcing_kernel.exceptions import InvalidQuantityError, ReceiptOverageError

_logger = logging.getLogger("sourcing_kernel.engines.receipt_status")

ZERO = Decimal("0")


class ReceivingStatus(str, Enum):
    """Purchase order statuses derived from receipt accounting."""

    PARTIALLY_DELIVERED = "PartiallyDelivered"
    FULLY_RECEIVED = "FullyReceived"
    COMPLETED = "Completed"


@dataclass(frozen=True)
class LineAccounting:
    """Quantities of one purchase order line."""

    line_id: UUID
    ordered: Decimal
    received: Decimal = ZERO
    damaged: Decimal = ZERO
    missing: Decimal = ZERO

    @property
    def accounted(self) -> Decimal:
        return self.received + self.damaged + self.missing

    @property
    def net_outstanding(self) -> Decimal:
        return self.ordered - self.accounted


@dataclass(frozen=True)
class ReceiptDelta:
    """Non-negative quantities recorded against one line by one receipt."""

    line_id: UUID
    ok: Decimal = ZERO
    damaged: Decimal = ZERO
    missing: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.ok + self.damaged + self.missing


@dataclass(frozen=True)
class ReceivingStatusDecision:
    status: ReceivingStatus
    outstanding_lines: int
    lines_with_missing: int
    anomaly: str | None = None


def validate_delta(delta: ReceiptDelta) -> None:
    """Raise InvalidQuantityError for negative or all-zero deltas."""
    for name in ("ok", "damaged", "missing"):
        value = getattr(delta, name)
        if value < ZERO:
            raise InvalidQuantityError(f"{name}_quantity", value, "must not be negative")
    if delta.total <= ZERO:
        raise InvalidQuantityError("receipt_quantity", delta.total, "receipt line must record a quantity")


def apply_delta(line: LineAccounting, delta: ReceiptDelta) -> LineAccounting:
    """
    Return ``line`` with ``delta`` applied.

    Raises:
        InvalidQuantityError: negative delta.
        ReceiptOverageError: the identity would be broken.
    """
    validate_delta(delta)
    updated = replace(
        line,
        received=line.received + delta.ok,
        damaged=line.damaged + delta.damaged,
        missing=line.missing + delta.missing,
    )
    if updated.accounted > updated.ordered:
        raise ReceiptOverageError(line.line_id, line.ordered, updated.accounted)
    return updated


@traced_engine("receipt_status", "1.0")
def derive_receipt_status(lines: Sequence[LineAccounting]) -> ReceivingStatusDecision:
    """Derive the receiving status of a purchase order from its lines."""
    if not lines:
        _logger.warning(
            "receipt_status_zero_line_anomaly",
            extra={"anomaly": "zero_line_purchase_order"},
        )
        return ReceivingStatusDecision(
            status=ReceivingStatus.COMPLETED,
            outstanding_lines=0,
            lines_with_missing=0,
            anomaly="zero_line_purchase_order",
        )

    outstanding = sum(1 for line in lines if line.accounted < line.ordered)
    with_missing = sum(1 for line in lines if line.missing > ZERO)

    if outstanding:
        status = ReceivingStatus.PARTIALLY_DELIVERED
    elif not with_missing:
        status = ReceivingStatus.FULLY_RECEIVED
    else:
        status = ReceivingStatus.COMPLETED

    return ReceivingStatusDecision(
        status=status,
        outstanding_lines=outstanding,
        lines_with_missing=with_missing,
    )
