"""
Receiving Module.

Receipt events against confirmed purchase orders: line accounting, stock
bookings, derived receiving status and requisition credit.
"""

from sourcing_modules.receiving.models import (
    ReceiptApplyStatus,
    ReceiptEventInput,
    ReceiptLineInput,
    ReceiptResult,
    StockMovement,
)
from sourcing_modules.receiving.service import ReceivingService

__all__ = [
    "ReceiptApplyStatus",
    "ReceiptEventInput",
    "ReceiptLineInput",
    "ReceiptResult",
    "ReceivingService",
    "StockMovement",
]
