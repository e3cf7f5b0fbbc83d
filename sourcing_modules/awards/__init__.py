"""
Awards Module.

Offer suggestion over a requisition's comparable quotations and the award
commit that turns accepted offers into purchase orders.
"""

from sourcing_modules.awards.models import AcceptedOffer, AwardCommitResult, AwardCommitStatus
from sourcing_modules.awards.selectors import OfferCatalogSelector
from sourcing_modules.awards.service import AwardService

__all__ = [
    "AcceptedOffer",
    "AwardCommitResult",
    "AwardCommitStatus",
    "AwardService",
    "OfferCatalogSelector",
]
