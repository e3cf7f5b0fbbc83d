"""
Module: sourcing_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import sourcing_kernel.domain / exceptions only.
    MUST NOT import sourcing_modules.

Invariants enforced:
    - Purity: engines never read the clock; ``today`` is passed in.
    - Decimal-only arithmetic for quantities and prices.
    - Determinism: identical inputs always produce identical outputs.
"""

from sourcing_engines.offer_selection import (
    CatalogLine,
    CatalogOffer,
    InfeasibleSelection,
    OfferCatalog,
    OfferSelectionResult,
    PartialCoverage,
    SelectionStatus,
    SelectionSuggestion,
    SuggestedAward,
    select_offers,
)
from sourcing_engines.receipt_status import (
    LineAccounting,
    ReceiptDelta,
    ReceivingStatus,
    ReceivingStatusDecision,
    apply_delta,
    derive_receipt_status,
)
from sourcing_engines.tracer import traced_engine

__all__ = [
    "CatalogLine",
    "CatalogOffer",
    "InfeasibleSelection",
    "OfferCatalog",
    "OfferSelectionResult",
    "PartialCoverage",
    "SelectionStatus",
    "SelectionSuggestion",
    "SuggestedAward",
    "select_offers",
    "LineAccounting",
    "ReceiptDelta",
    "ReceivingStatus",
    "ReceivingStatusDecision",
    "apply_delta",
    "derive_receipt_status",
    "traced_engine",
]
