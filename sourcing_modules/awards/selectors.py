"""
Offer catalog selector (``sourcing_modules.awards.selectors``).

Read-only: builds the ``OfferCatalog`` the offer selection engine consumes
from a requisition and its comparable quotations.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from sourcing_config.schema import SourcingConfig
from sourcing_engines.offer_selection import CatalogLine, CatalogOffer, OfferCatalog
from sourcing_kernel.domain.values import costs_from_json
from sourcing_kernel.exceptions import RequisitionNotFoundError
from sourcing_kernel.logging_config import get_logger
from sourcing_modules.quotations.orm import QuotationModel
from sourcing_modules.requisitions.orm import RequisitionModel

logger = get_logger("modules.awards.selectors")


class OfferCatalogSelector:
    """Assemble candidate offers per required product line."""

    def __init__(self, session: Session, config: SourcingConfig | None = None):
        self._session = session
        self._config = config or SourcingConfig.with_defaults()

    def build(self, requisition_id: UUID) -> OfferCatalog:
        requisition = self._session.get(RequisitionModel, requisition_id)
        if requisition is None:
            raise RequisitionNotFoundError(requisition_id)

        stmt = (
            select(QuotationModel)
            .where(
                QuotationModel.requisition_id == requisition_id,
                QuotationModel.status.in_(self._config.comparable_quotation_statuses),
            )
            .order_by(QuotationModel.supplier_id, QuotationModel.id)
        )
        quotations = list(self._session.scalars(stmt))

        lines = []
        offer_count = 0
        for line in requisition.lines:
            offers = []
            for quotation in quotations:
                offer = quotation.offer_for(line.product_id)
                if offer is None:
                    continue
                offers.append(
                    CatalogOffer(
                        offer_id=offer.id,
                        quotation_id=quotation.id,
                        supplier_id=quotation.supplier_id,
                        product_id=offer.product_id,
                        quoted_quantity=offer.quoted_quantity,
                        unit_price_quoted=offer.unit_price_quoted,
                        estimated_delivery_date=offer.estimated_delivery_date,
                        quotation_status=quotation.status,
                        quotation_total=quotation.total_amount,
                        additional_costs=costs_from_json(quotation.additional_costs),
                        conditions=offer.conditions,
                    )
                )
            offer_count += len(offers)
            lines.append(
                CatalogLine(
                    line_id=line.id,
                    product_id=line.product_id,
                    required_quantity=line.required_quantity,
                    purchased_quantity=line.purchased_quantity,
                    pending_po_quantity=line.pending_po_quantity,
                    product_name=line.product_name,
                    offers=tuple(offers),
                )
            )

        logger.debug(
            "offer_catalog_built",
            extra={
                "requisition_id": str(requisition_id),
                "line_count": len(lines),
                "quotation_count": len(quotations),
                "offer_count": offer_count,
            },
        )
        return OfferCatalog(requisition_id=requisition_id, lines=tuple(lines))
