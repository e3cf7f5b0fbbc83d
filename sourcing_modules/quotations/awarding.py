"""
Award propagation onto quotations (``sourcing_modules.quotations.awarding``).

Runs inside the requisition-scoped award transaction, after the requisition
ledger has applied the batch.  Flush-only.

Rules
-----
* Each awarded offer's ``awarded_quantity`` grows by the awarded quantity.
* A referenced quotation becomes Awarded when every offer with
  quoted_quantity > 0 has awarded_quantity > 0, otherwise PartiallyAwarded.
* Every other quotation of the requisition in Received or PartiallyAwarded
  becomes Lost.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from sourcing_kernel.domain.actor import ActorContext
from sourcing_kernel.domain.clock import Clock
from sourcing_kernel.exceptions import QuotationNotFoundError
from sourcing_kernel.logging_config import get_logger
from sourcing_kernel.models.audit_record import AuditAction
from sourcing_kernel.services.audit_trail import AuditTrail
from sourcing_kernel.services.base import BaseService
from sourcing_modules.quotations.models import OfferAward, QuotationStatus, QuotationStatusChange
from sourcing_modules.quotations.orm import OfferModel, QuotationModel

logger = get_logger("modules.quotations.awarding")

AGGREGATE_TYPE = "quotation"

ZERO = Decimal("0")

_LOSABLE = (QuotationStatus.RECEIVED.value, QuotationStatus.PARTIALLY_AWARDED.value)


class QuotationAwarding(BaseService):
    """Apply one award batch to the quotations of a requisition."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._audit = AuditTrail(session, self._clock)

    def apply(
        self,
        requisition_id: UUID,
        awards: Sequence[OfferAward],
        actor: ActorContext,
        batch_id: str,
    ) -> list[QuotationStatusChange]:
        stmt = select(QuotationModel).where(QuotationModel.requisition_id == requisition_id)
        quotations = {q.id: q for q in self._session.scalars(stmt)}

        by_quotation: dict[UUID, list[OfferAward]] = {}
        for award in awards:
            by_quotation.setdefault(award.quotation_id, []).append(award)

        changes: list[QuotationStatusChange] = []
        for quotation_id, group in by_quotation.items():
            quotation = quotations.get(quotation_id)
            if quotation is None:
                raise QuotationNotFoundError(quotation_id)
            for award in group:
                offer = self._offer(quotation, award)
                before = offer.awarded_quantity
                offer.awarded_quantity = before + award.quantity
                offer.updated_by_id = actor.actor_id
                self._audit.record(
                    AGGREGATE_TYPE,
                    quotation.id,
                    AuditAction.OFFER_AWARDED,
                    actor,
                    field="awarded_quantity",
                    entity_ref=offer.product_id,
                    before=before,
                    after=offer.awarded_quantity,
                    payload={"award_batch_id": batch_id},
                )

            fully = all(
                offer.awarded_quantity > ZERO
                for offer in quotation.offers
                if offer.quoted_quantity > ZERO
            )
            target = QuotationStatus.AWARDED if fully else QuotationStatus.PARTIALLY_AWARDED
            change = self._set_status(quotation, target, actor, batch_id)
            if change is not None:
                changes.append(change)
            quotation.touch(actor.actor_id)

        for quotation in quotations.values():
            if quotation.id in by_quotation or quotation.status not in _LOSABLE:
                continue
            change = self._set_status(quotation, QuotationStatus.LOST, actor, batch_id)
            if change is not None:
                changes.append(change)
            quotation.touch(actor.actor_id)

        self._session.flush()
        logger.info(
            "quotation_awards_propagated",
            extra={
                "requisition_id": str(requisition_id),
                "award_batch_id": batch_id,
                "awarded_quotations": len(by_quotation),
                "status_changes": [
                    {"quotation_id": str(c.quotation_id), "before": c.before.value, "after": c.after.value}
                    for c in changes
                ],
            },
        )
        return changes

    def _offer(self, quotation: QuotationModel, award: OfferAward) -> OfferModel:
        for offer in quotation.offers:
            if award.offer_id is not None and offer.id == award.offer_id:
                return offer
            if award.offer_id is None and offer.product_id == award.product_id:
                return offer
        # Awards are pre-validated against the quotation's offers.
        raise QuotationNotFoundError(quotation.id)

    def _set_status(
        self,
        quotation: QuotationModel,
        target: QuotationStatus,
        actor: ActorContext,
        batch_id: str,
    ) -> QuotationStatusChange | None:
        before = quotation.status
        if before == target.value:
            return None
        quotation.status = target.value
        self._audit.record_status_change(
            AGGREGATE_TYPE,
            quotation.id,
            actor,
            before=before,
            after=target.value,
            award_batch_id=batch_id,
        )
        return QuotationStatusChange(
            quotation_id=quotation.id,
            before=QuotationStatus(before),
            after=target,
        )
