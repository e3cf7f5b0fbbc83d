"""
Quotations Module Service (``sourcing_modules.quotations.service``).

Responsibility
--------------
Request quotations from suppliers, record their answers, and reject them.
Award statuses are not set here (see ``quotations.awarding``).

Architecture position
---------------------
**Modules layer** -- each public method owns its transaction through
``run_with_conflict_retry`` and returns frozen DTOs.

Failure modes
-------------
* Requisition in POInProgress, Completed or Canceled  -> ``InvalidTransitionError``.
* Inactive supplier or product  -> ``InactiveReferenceError``.
* Receiving a quotation that is not Sent/Received  -> ``InvalidTransitionError``.
* Negative quoted quantity  -> ``InvalidQuantityError``; negative price  ->
  ``InvalidPriceError``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from sourcing_config.schema import SourcingConfig
from sourcing_kernel.domain.actor import ActorContext
from sourcing_kernel.domain.clock import Clock, SystemClock
from sourcing_kernel.domain.collaborators import MasterDataLookup, ReferenceKind, require_active
from sourcing_kernel.domain.values import AdditionalCost, costs_to_json, sum_additional_costs
from sourcing_kernel.exceptions import (
    InvalidPriceError,
    InvalidQuantityError,
    InvalidTransitionError,
    QuotationNotFoundError,
    ValidationError,
)
from sourcing_kernel.logging_config import LogContext, get_logger
from sourcing_kernel.models.audit_record import AuditAction
from sourcing_kernel.services.audit_trail import AuditTrail
from sourcing_kernel.services.conflict_retry import run_with_conflict_retry
from sourcing_modules.quotations.awarding import AGGREGATE_TYPE
from sourcing_modules.quotations.models import Quotation, QuotationStatus, ReceivedOfferInput
from sourcing_modules.quotations.orm import OfferModel, QuotationModel
from sourcing_modules.quotations.workflows import QUOTATION_WORKFLOW, RECEIVABLE_STATUSES
from sourcing_modules.requisitions.ledger import AGGREGATE_TYPE as REQUISITION_AGGREGATE
from sourcing_modules.requisitions.ledger import RequisitionLedger
from sourcing_modules.requisitions.models import RequisitionStatus

logger = get_logger("modules.quotations.service")

ZERO = Decimal("0")

_NOT_QUOTABLE = (
    RequisitionStatus.PO_IN_PROGRESS.value,
    RequisitionStatus.COMPLETED.value,
    RequisitionStatus.CANCELED.value,
)


class QuotationService:
    """Entry point for the quotation request/response flow."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        master_data: MasterDataLookup,
        clock: Clock | None = None,
        config: SourcingConfig | None = None,
    ):
        self._session_factory = session_factory
        self._master_data = master_data
        self._clock = clock or SystemClock()
        self._config = config or SourcingConfig.with_defaults()

    # =========================================================================
    # Request
    # =========================================================================

    def request_quotation(
        self,
        requisition_id: UUID,
        supplier_id: str,
        actor: ActorContext,
        response_deadline: date | None = None,
        products: Sequence[str] | None = None,
        notes: str | None = None,
    ) -> Quotation:
        """
        Create a Sent quotation for some (default: all) requisition products.

        Moves the requisition from PendingQuotation to Quoted.
        """
        try:
            require_active(self._master_data, ReferenceKind.SUPPLIER, supplier_id)
            if products is not None:
                if not products:
                    raise ValidationError("At least one product must be requested")
                for product_id in products:
                    require_active(self._master_data, ReferenceKind.PRODUCT, product_id)
        except ValidationError as exc:
            logger.warning(
                "quotation_request_rejected",
                extra={
                    "requisition_id": str(requisition_id),
                    "supplier_id": supplier_id,
                    "error_code": exc.code,
                    "reason": str(exc),
                },
            )
            raise

        def _request(session: Session) -> Quotation:
            ledger = RequisitionLedger(session, self._clock)
            requisition = ledger.load(requisition_id)
            if requisition.status in _NOT_QUOTABLE:
                raise InvalidTransitionError(
                    "requisition", requisition_id, requisition.status, RequisitionStatus.QUOTED.value,
                )

            wanted = list(products) if products is not None else [line.product_id for line in requisition.lines]
            offers = []
            for product_id in wanted:
                line = requisition.line_for(product_id)
                if line is None:
                    raise ValidationError(
                        f"Product {product_id} is not part of requisition {requisition_id}"
                    )
                offers.append(
                    OfferModel(
                        product_id=line.product_id,
                        product_name=line.product_name,
                        required_quantity=line.required_quantity,
                        created_by_id=actor.actor_id,
                    )
                )

            quotation = QuotationModel(
                requisition_id=requisition_id,
                supplier_id=supplier_id,
                status=QuotationStatus.SENT.value,
                request_date=self._clock.now(),
                response_deadline=response_deadline,
                notes=notes,
                additional_costs=[],
                created_by_id=actor.actor_id,
            )
            quotation.offers = offers
            session.add(quotation)
            session.flush()

            audit = AuditTrail(session, self._clock)
            audit.record(
                AGGREGATE_TYPE,
                quotation.id,
                AuditAction.QUOTATION_REQUESTED,
                actor,
                after=QuotationStatus.SENT.value,
                payload={"supplier_id": supplier_id, "products": wanted},
            )

            if requisition.status == RequisitionStatus.PENDING_QUOTATION.value:
                requisition.status = RequisitionStatus.QUOTED.value
                requisition.touch(actor.actor_id)
                audit.record_status_change(
                    REQUISITION_AGGREGATE,
                    requisition.id,
                    actor,
                    before=RequisitionStatus.PENDING_QUOTATION.value,
                    after=RequisitionStatus.QUOTED.value,
                    quotation_id=quotation.id,
                )
                session.flush()
            return quotation.to_dto()

        with LogContext.bind(requisition_id=requisition_id, actor_id=actor.actor_id):
            try:
                dto = self._run(_request, "requisition", requisition_id)
            except ValidationError as exc:
                logger.warning(
                    "quotation_request_rejected",
                    extra={
                        "requisition_id": str(requisition_id),
                        "supplier_id": supplier_id,
                        "error_code": exc.code,
                        "reason": str(exc),
                    },
                )
                raise
            logger.info(
                "quotation_requested",
                extra={
                    "quotation_id": str(dto.id),
                    "requisition_id": str(requisition_id),
                    "supplier_id": supplier_id,
                    "offer_count": len(dto.offers),
                },
            )
            return dto

    # =========================================================================
    # Response
    # =========================================================================

    def receive_quotation(
        self,
        quotation_id: UUID,
        offers: Sequence[ReceivedOfferInput],
        actor: ActorContext,
        additional_costs: Sequence[AdditionalCost] = (),
        shipping_conditions: str | None = None,
        notes: str | None = None,
    ) -> Quotation:
        """
        Record the supplier's quoted quantities, prices and ETAs.

        Offers are matched by product; requested products the supplier did not
        answer keep quoted_quantity 0.  Subtotal and total are recalculated.
        """
        for answer in offers:
            if answer.quoted_quantity < ZERO:
                raise InvalidQuantityError("quoted_quantity", answer.quoted_quantity, "must be >= 0")
            if answer.unit_price_quoted < ZERO:
                raise InvalidPriceError(answer.product_id, answer.unit_price_quoted)

        def _receive(session: Session) -> Quotation:
            quotation = self._load(session, quotation_id)
            if quotation.status not in RECEIVABLE_STATUSES:
                raise InvalidTransitionError(
                    "quotation", quotation_id, quotation.status, QuotationStatus.RECEIVED.value,
                )

            for answer in offers:
                offer = quotation.offer_for(answer.product_id)
                if offer is None:
                    raise ValidationError(
                        f"Product {answer.product_id} was not requested on quotation {quotation_id}"
                    )
                offer.quoted_quantity = answer.quoted_quantity
                offer.unit_price_quoted = answer.unit_price_quoted
                offer.estimated_delivery_date = answer.estimated_delivery_date
                offer.conditions = answer.conditions
                offer.notes = answer.notes
                offer.updated_by_id = actor.actor_id

            subtotal = sum((o.quoted_quantity * o.unit_price_quoted for o in quotation.offers), ZERO)
            before = quotation.status
            quotation.products_subtotal = subtotal
            quotation.additional_costs = costs_to_json(additional_costs)
            quotation.total_amount = subtotal + sum_additional_costs(additional_costs)
            quotation.shipping_conditions = shipping_conditions
            quotation.notes = notes if notes is not None else quotation.notes
            quotation.received_date = self._clock.now()
            quotation.status = QuotationStatus.RECEIVED.value
            quotation.touch(actor.actor_id)

            audit = AuditTrail(session, self._clock)
            audit.record(
                AGGREGATE_TYPE,
                quotation.id,
                AuditAction.OFFERS_RECEIVED,
                actor,
                payload={
                    "offers": [
                        {
                            "product_id": a.product_id,
                            "quoted_quantity": a.quoted_quantity,
                            "unit_price_quoted": a.unit_price_quoted,
                            "estimated_delivery_date": a.estimated_delivery_date,
                        }
                        for a in offers
                    ],
                    "total_amount": quotation.total_amount,
                },
            )
            if before != quotation.status:
                audit.record_status_change(
                    AGGREGATE_TYPE, quotation.id, actor, before=before, after=quotation.status,
                )
            session.flush()
            return quotation.to_dto()

        with LogContext.bind(actor_id=actor.actor_id):
            dto = self._run(_receive, "quotation", quotation_id)
            logger.info(
                "quotation_received",
                extra={
                    "quotation_id": str(quotation_id),
                    "requisition_id": str(dto.requisition_id),
                    "products_subtotal": str(dto.products_subtotal),
                    "total_amount": str(dto.total_amount),
                },
            )
            return dto

    def reject_quotation(self, quotation_id: UUID, actor: ActorContext) -> Quotation:
        target = QuotationStatus.REJECTED.value

        def _reject(session: Session) -> Quotation:
            quotation = self._load(session, quotation_id)
            before = quotation.status
            if QUOTATION_WORKFLOW.find(before, target) is None:
                raise InvalidTransitionError("quotation", quotation_id, before, target)
            quotation.status = target
            quotation.touch(actor.actor_id)
            AuditTrail(session, self._clock).record_status_change(
                AGGREGATE_TYPE, quotation.id, actor, before=before, after=target,
            )
            session.flush()
            return quotation.to_dto()

        dto = self._run(_reject, "quotation", quotation_id)
        logger.info("quotation_rejected", extra={"quotation_id": str(quotation_id)})
        return dto

    # =========================================================================
    # Queries
    # =========================================================================

    def get_quotation(self, quotation_id: UUID) -> Quotation:
        session = self._session_factory()
        try:
            return self._load(session, quotation_id).to_dto()
        finally:
            session.close()

    def list_for_requisition(self, requisition_id: UUID) -> list[Quotation]:
        session = self._session_factory()
        try:
            stmt = (
                select(QuotationModel)
                .where(QuotationModel.requisition_id == requisition_id)
                .order_by(QuotationModel.request_date, QuotationModel.supplier_id)
            )
            return [q.to_dto() for q in session.scalars(stmt)]
        finally:
            session.close()

    def _load(self, session: Session, quotation_id: UUID) -> QuotationModel:
        quotation = session.get(QuotationModel, quotation_id)
        if quotation is None:
            raise QuotationNotFoundError(quotation_id)
        return quotation

    def _run(self, operation, entity_type: str, entity_id: UUID):
        return run_with_conflict_retry(
            self._session_factory,
            operation,
            entity_type=entity_type,
            entity_id=entity_id,
            max_attempts=self._config.max_conflict_retries,
            backoff_seconds=self._config.conflict_backoff_seconds,
        )
