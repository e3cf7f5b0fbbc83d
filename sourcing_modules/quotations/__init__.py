"""
Quotations Module.

Supplier quotes against a requisition: request, response, rejection, and the
award propagation that moves them to PartiallyAwarded, Awarded or Lost.
"""

from sourcing_modules.quotations.awarding import QuotationAwarding
from sourcing_modules.quotations.models import (
    Offer,
    OfferAward,
    Quotation,
    QuotationStatus,
    QuotationStatusChange,
    ReceivedOfferInput,
)
from sourcing_modules.quotations.service import QuotationService
from sourcing_modules.quotations.workflows import QUOTATION_WORKFLOW

__all__ = [
    "Offer",
    "OfferAward",
    "QUOTATION_WORKFLOW",
    "Quotation",
    "QuotationAwarding",
    "QuotationService",
    "QuotationStatus",
    "QuotationStatusChange",
    "ReceivedOfferInput",
]
