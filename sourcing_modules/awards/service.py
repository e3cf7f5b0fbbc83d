"""
Awards Module Service (``sourcing_modules.awards.service``).

Responsibility
--------------
Suggest offers for a requisition (offer selection engine) and commit the
operator's accepted offers: one purchase order per supplier, then a single
requisition-scoped reconciliation of pending quantities and quotation
statuses.

Architecture position
---------------------
**Modules layer** -- orchestrates ``PurchaseOrderService``,
``RequisitionLedger`` and ``QuotationAwarding``.  Pure selection is
delegated to ``sourcing_engines.offer_selection``.

Commit phases
-------------
1. Pre-validation, read-only.  Any failure -> VALIDATION_FAILED (or
   OVER_ORDER_NOT_ACKNOWLEDGED); nothing is written.
2. Per supplier group, in first-appearance order: reuse the order already
   created for (requisition, batch, supplier) or create it in its own
   transaction.  A failure stops the loop -> PARTIAL_FAILURE.
3. Requisition transaction: ledger step ``award/<batch>`` plus quotation
   award propagation.  A domain failure -> PARTIAL_FAILURE; re-submitting
   the batch reuses every order from phase 2.

Invariants enforced
-------------------
* Same requisition and accepted-offer set -> same batch id -> no duplicate
  orders, no double-counted pending quantity.
* A batch whose orders were all canceled or rejected is spent; awarding the
  same offers again commits a new generation of it.
* Awarding more than a product's net remaining need requires explicit
  acknowledgement.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from sourcing_config.schema import SourcingConfig
from sourcing_engines.offer_selection import OfferSelectionResult, SuggestedAward, select_offers
from sourcing_kernel.domain.actor import ActorContext
from sourcing_kernel.domain.clock import Clock, SystemClock
from sourcing_kernel.domain.collaborators import MasterDataLookup, ReferenceKind, require_active
from sourcing_kernel.domain.values import AdditionalCost, costs_from_json
from sourcing_kernel.exceptions import (
    AwardValidationError,
    InvalidPriceError,
    InvalidQuantityError,
    InvalidTransitionError,
    PartialFailure,
    SourcingKernelError,
    ValidationError,
)
from sourcing_kernel.logging_config import LogContext, get_logger
from sourcing_kernel.services.conflict_retry import run_with_conflict_retry
from sourcing_kernel.utils.idempotency import derive_award_batch_id
from sourcing_modules.awards.models import AcceptedOffer, AwardCommitResult, AwardCommitStatus
from sourcing_modules.awards.selectors import OfferCatalogSelector
from sourcing_modules.purchase_orders.models import PurchaseOrderLineInput
from sourcing_modules.purchase_orders.orm import PurchaseOrderModel
from sourcing_modules.purchase_orders.service import PurchaseOrderService
from sourcing_modules.purchase_orders.workflows import REVERSAL_STATUSES
from sourcing_modules.quotations.awarding import QuotationAwarding
from sourcing_modules.quotations.models import OfferAward, QuotationStatusChange
from sourcing_modules.quotations.orm import QuotationModel
from sourcing_modules.requisitions.ledger import RequisitionLedger
from sourcing_modules.requisitions.models import LedgerEntryKind, LedgerOutcome, RequisitionStatus

logger = get_logger("modules.awards.service")

ZERO = Decimal("0")

_CLOSED_REQUISITION = (RequisitionStatus.COMPLETED.value, RequisitionStatus.CANCELED.value)


@dataclass(frozen=True)
class _SupplierGroup:
    supplier_id: str
    quotation_id: UUID
    offers: tuple[AcceptedOffer, ...]
    additional_costs: tuple[AdditionalCost, ...]


@dataclass(frozen=True)
class _ValidatedBatch:
    groups: tuple[_SupplierGroup, ...]
    product_names: dict[str, str]
    offer_ids: dict[tuple[UUID, str], UUID]
    over_ordered: tuple[str, ...]


class AwardService:
    """
    Offer suggestion and award commit for one requisition at a time.

    Contract
    --------
    * ``commit_awards`` never raises for expected business outcomes; it
      returns ``AwardCommitResult`` with a status.
    * Infrastructure errors propagate.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        master_data: MasterDataLookup,
        clock: Clock | None = None,
        config: SourcingConfig | None = None,
        purchase_orders: PurchaseOrderService | None = None,
    ):
        self._session_factory = session_factory
        self._master_data = master_data
        self._clock = clock or SystemClock()
        self._config = config or SourcingConfig.with_defaults()
        self._purchase_orders = purchase_orders or PurchaseOrderService(
            session_factory, master_data, self._clock, self._config
        )

    # =========================================================================
    # Suggestion
    # =========================================================================

    def suggest(self, requisition_id: UUID, eta_ceiling_days: int | None = None) -> OfferSelectionResult:
        """Run the offer selection engine over the requisition's comparable offers."""
        session = self._session_factory()
        try:
            catalog = OfferCatalogSelector(session, self._config).build(requisition_id)
        finally:
            session.close()

        result = select_offers(
            catalog=catalog,
            today=self._clock.today(),
            eta_ceiling_days=eta_ceiling_days,
        )
        logger.info(
            "offer_selection_completed",
            extra={
                "requisition_id": str(requisition_id),
                "eta_ceiling_days": eta_ceiling_days,
                "suggestions": len(result.accepted_offers()),
                "infeasible_lines": len(result.infeasible),
            },
        )
        return result

    # =========================================================================
    # Commit
    # =========================================================================

    def commit_awards(
        self,
        requisition_id: UUID,
        accepted_offers: Sequence[AcceptedOffer | SuggestedAward],
        actor: ActorContext,
        award_batch_id: str | None = None,
        acknowledge_over_order: bool = False,
    ) -> AwardCommitResult:
        """Create purchase orders for the accepted offers and reconcile the requisition."""
        offers = tuple(AcceptedOffer.coerce(o) for o in accepted_offers)
        requested_id = award_batch_id or derive_award_batch_id(
            requisition_id, [o.key_dict() for o in offers]
        )
        batch_id, existing = self._resolve_batch(requisition_id, requested_id)

        with LogContext.bind(
            requisition_id=requisition_id,
            award_batch_id=batch_id,
            actor_id=actor.actor_id,
        ):
            logger.info(
                "award_commit_started",
                extra={"offer_count": len(offers), "acknowledge_over_order": acknowledge_over_order},
            )

            if existing is not None:
                logger.info(
                    "award_commit_already_committed",
                    extra={"purchase_order_ids": [str(i) for i in existing]},
                )
                return AwardCommitResult(
                    status=AwardCommitStatus.ALREADY_COMMITTED,
                    requisition_id=requisition_id,
                    award_batch_id=batch_id,
                    purchase_order_ids=existing,
                    message="Award batch already committed",
                )

            # Phase 1: pre-validation
            try:
                validated = self._validate(requisition_id, offers)
            except ValidationError as exc:
                logger.warning(
                    "award_commit_rejected",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                return AwardCommitResult(
                    status=AwardCommitStatus.VALIDATION_FAILED,
                    requisition_id=requisition_id,
                    award_batch_id=batch_id,
                    error_code=exc.code,
                    message=str(exc),
                )

            if (
                validated.over_ordered
                and self._config.require_over_order_acknowledgement
                and not acknowledge_over_order
            ):
                logger.warning(
                    "award_commit_over_order_not_acknowledged",
                    extra={"products": list(validated.over_ordered)},
                )
                return AwardCommitResult(
                    status=AwardCommitStatus.OVER_ORDER_NOT_ACKNOWLEDGED,
                    requisition_id=requisition_id,
                    award_batch_id=batch_id,
                    over_ordered_products=validated.over_ordered,
                    message="Awarded quantity exceeds the net remaining need",
                )
            if validated.over_ordered:
                logger.warning(
                    "award_commit_over_order_acknowledged",
                    extra={"products": list(validated.over_ordered)},
                )

            # Phase 2: one purchase order per supplier
            po_ids: list[UUID] = []
            for group in validated.groups:
                try:
                    po_ids.append(self._order_for_group(requisition_id, batch_id, group, validated, actor))
                except SourcingKernelError as exc:
                    failure = PartialFailure(tuple(po_ids), group.supplier_id, exc)
                    logger.error(
                        "award_commit_partial_failure",
                        extra={
                            "phase": "purchase_orders",
                            "failed_supplier_id": group.supplier_id,
                            "purchase_order_ids": [str(i) for i in po_ids],
                            "error_code": exc.code,
                            "reason": str(exc),
                        },
                    )
                    return AwardCommitResult(
                        status=AwardCommitStatus.PARTIAL_FAILURE,
                        requisition_id=requisition_id,
                        award_batch_id=batch_id,
                        purchase_order_ids=failure.created_purchase_order_ids,
                        over_ordered_products=validated.over_ordered,
                        failed_supplier_id=failure.failed_supplier_id,
                        error_code=failure.cause_code,
                        message=str(failure),
                    )

            # Phase 3: requisition-scoped reconciliation
            try:
                outcome, changes = self._reconcile(requisition_id, batch_id, offers, validated, actor)
            except SourcingKernelError as exc:
                failure = PartialFailure(tuple(po_ids), None, exc)
                logger.error(
                    "award_commit_partial_failure",
                    extra={
                        "phase": "requisition",
                        "purchase_order_ids": [str(i) for i in po_ids],
                        "error_code": exc.code,
                        "reason": str(exc),
                    },
                )
                return AwardCommitResult(
                    status=AwardCommitStatus.PARTIAL_FAILURE,
                    requisition_id=requisition_id,
                    award_batch_id=batch_id,
                    purchase_order_ids=failure.created_purchase_order_ids,
                    over_ordered_products=validated.over_ordered,
                    error_code=failure.cause_code,
                    message=str(failure),
                )
            except Exception:
                logger.error(
                    "award_commit_inconsistent",
                    extra={"purchase_order_ids": [str(i) for i in po_ids]},
                )
                raise

            logger.info(
                "award_commit_completed",
                extra={
                    "purchase_order_ids": [str(i) for i in po_ids],
                    "requisition_status": outcome.status_after.value if outcome else None,
                    "quotation_changes": len(changes),
                },
            )
            return AwardCommitResult(
                status=AwardCommitStatus.COMMITTED,
                requisition_id=requisition_id,
                award_batch_id=batch_id,
                purchase_order_ids=tuple(po_ids),
                over_ordered_products=validated.over_ordered,
                message=f"{len(po_ids)} purchase order(s) created",
                requisition_outcome=outcome,
                quotation_changes=changes,
            )

    # =========================================================================
    # Phases
    # =========================================================================

    def _validate(self, requisition_id: UUID, offers: tuple[AcceptedOffer, ...]) -> _ValidatedBatch:
        if not offers:
            raise ValidationError("At least one accepted offer is required")

        session = self._session_factory()
        try:
            requisition = RequisitionLedger(session, self._clock).load(requisition_id)
            if requisition.status in _CLOSED_REQUISITION:
                raise InvalidTransitionError(
                    "requisition", requisition_id, requisition.status, RequisitionStatus.PO_IN_PROGRESS.value,
                )

            quotations: dict[UUID, QuotationModel] = {}
            offer_ids: dict[tuple[UUID, str], UUID] = {}
            seen_pairs: set[tuple[str, str]] = set()
            awarded: dict[str, Decimal] = {}

            for accepted in offers:
                if accepted.awarded_quantity <= ZERO:
                    raise InvalidQuantityError("awarded_quantity", accepted.awarded_quantity)
                if accepted.unit_price < ZERO:
                    raise InvalidPriceError(accepted.product_id, accepted.unit_price)

                quotation = quotations.get(accepted.quotation_id)
                if quotation is None:
                    quotation = session.get(QuotationModel, accepted.quotation_id)
                    if quotation is None or quotation.requisition_id != requisition_id:
                        raise AwardValidationError(
                            accepted.product_id, accepted.quotation_id,
                            "quotation does not belong to the requisition",
                        )
                    quotations[quotation.id] = quotation
                if quotation.supplier_id != accepted.supplier_id:
                    raise AwardValidationError(
                        accepted.product_id, accepted.quotation_id, "supplier does not match quotation",
                    )
                if quotation.status not in self._config.comparable_quotation_statuses:
                    raise AwardValidationError(
                        accepted.product_id, accepted.quotation_id,
                        f"quotation is {quotation.status}",
                    )
                if requisition.line_for(accepted.product_id) is None:
                    raise AwardValidationError(
                        accepted.product_id, accepted.quotation_id, "product is not on the requisition",
                    )
                offer = quotation.offer_for(accepted.product_id)
                if offer is None or (accepted.offer_id is not None and offer.id != accepted.offer_id):
                    raise AwardValidationError(
                        accepted.product_id, accepted.quotation_id, "no matching offer on quotation",
                    )
                if offer.quoted_quantity <= ZERO:
                    raise AwardValidationError(
                        accepted.product_id, accepted.quotation_id, "supplier did not quote this product",
                    )
                pair = (accepted.supplier_id, accepted.product_id)
                if pair in seen_pairs:
                    raise AwardValidationError(
                        accepted.product_id, accepted.quotation_id,
                        "product accepted twice for the same supplier",
                    )
                seen_pairs.add(pair)

                require_active(self._master_data, ReferenceKind.SUPPLIER, accepted.supplier_id)
                require_active(self._master_data, ReferenceKind.PRODUCT, accepted.product_id)

                offer_ids[(quotation.id, accepted.product_id)] = offer.id
                awarded[accepted.product_id] = awarded.get(accepted.product_id, ZERO) + accepted.awarded_quantity

            over_ordered = []
            for product_id, quantity in awarded.items():
                line = requisition.line_for(product_id)
                net_remaining = max(
                    ZERO, line.required_quantity - line.purchased_quantity - line.pending_po_quantity
                )
                if quantity > net_remaining:
                    over_ordered.append(product_id)

            groups: dict[str, list[AcceptedOffer]] = {}
            for accepted in offers:
                groups.setdefault(accepted.supplier_id, []).append(accepted)

            return _ValidatedBatch(
                groups=tuple(
                    _SupplierGroup(
                        supplier_id=supplier_id,
                        quotation_id=group[0].quotation_id,
                        offers=tuple(group),
                        additional_costs=costs_from_json(
                            quotations[group[0].quotation_id].additional_costs
                        ),
                    )
                    for supplier_id, group in groups.items()
                ),
                product_names={line.product_id: line.product_name for line in requisition.lines},
                offer_ids=offer_ids,
                over_ordered=tuple(sorted(over_ordered)),
            )
        finally:
            session.close()

    def _order_for_group(
        self,
        requisition_id: UUID,
        batch_id: str,
        group: _SupplierGroup,
        validated: _ValidatedBatch,
        actor: ActorContext,
    ) -> UUID:
        existing = self._purchase_orders.find_by_award_key(requisition_id, batch_id, group.supplier_id)
        if existing is not None:
            logger.info(
                "award_purchase_order_reused",
                extra={"purchase_order_id": str(existing.id), "supplier_id": group.supplier_id},
            )
            return existing.id

        etas = [o.estimated_delivery_date for o in group.offers if o.estimated_delivery_date is not None]
        try:
            po = self._purchase_orders.create_purchase_order(
                requisition_id=requisition_id,
                supplier_id=group.supplier_id,
                lines=[
                    PurchaseOrderLineInput(
                        product_id=o.product_id,
                        ordered_quantity=o.awarded_quantity,
                        unit_price=o.unit_price,
                        product_name=validated.product_names.get(o.product_id, ""),
                        source_offer_id=validated.offer_ids.get((o.quotation_id, o.product_id)),
                    )
                    for o in group.offers
                ],
                actor=actor,
                quotation_id=group.quotation_id,
                award_batch_id=batch_id,
                expected_delivery_date=max(etas) if etas else None,
                additional_costs=group.additional_costs,
            )
        except IntegrityError:
            existing = self._purchase_orders.find_by_award_key(requisition_id, batch_id, group.supplier_id)
            if existing is None:
                raise
            logger.info(
                "award_purchase_order_reused",
                extra={"purchase_order_id": str(existing.id), "supplier_id": group.supplier_id},
            )
            return existing.id
        return po.id

    def _reconcile(
        self,
        requisition_id: UUID,
        batch_id: str,
        offers: tuple[AcceptedOffer, ...],
        validated: _ValidatedBatch,
        actor: ActorContext,
    ) -> tuple[LedgerOutcome | None, tuple[QuotationStatusChange, ...]]:
        awarded: dict[str, Decimal] = {}
        for o in offers:
            awarded[o.product_id] = awarded.get(o.product_id, ZERO) + o.awarded_quantity
        awards = [
            OfferAward(
                quotation_id=o.quotation_id,
                product_id=o.product_id,
                quantity=o.awarded_quantity,
                offer_id=validated.offer_ids.get((o.quotation_id, o.product_id)),
            )
            for o in offers
        ]

        def _apply(session: Session) -> tuple[LedgerOutcome | None, tuple[QuotationStatusChange, ...]]:
            ledger = RequisitionLedger(session, self._clock)
            requisition = ledger.load(requisition_id)
            if ledger.has_applied(requisition.id, LedgerEntryKind.AWARD, batch_id):
                return None, ()
            outcome = ledger.apply_award(requisition, batch_id, awarded, actor)
            changes = QuotationAwarding(session, self._clock).apply(requisition_id, awards, actor, batch_id)
            return outcome, tuple(changes)

        return run_with_conflict_retry(
            self._session_factory,
            _apply,
            entity_type="requisition",
            entity_id=requisition_id,
            max_attempts=self._config.max_conflict_retries,
            backoff_seconds=self._config.conflict_backoff_seconds,
        )

    def _resolve_batch(self, requisition_id: UUID, requested_id: str) -> tuple[str, tuple[UUID, ...] | None]:
        """
        Pick the batch id to commit under and report whether it is committed.

        A batch whose orders were all canceled or rejected is spent: the same
        offers awarded again commit under the next generation
        (``<id>.1``, ``<id>.2``, ...) instead of answering ALREADY_COMMITTED
        with dead orders.
        """
        session = self._session_factory()
        try:
            ledger = RequisitionLedger(session, self._clock)
            generation = 0
            while True:
                batch_id = requested_id if generation == 0 else f"{requested_id}.{generation}"
                stmt = (
                    select(PurchaseOrderModel.id, PurchaseOrderModel.status)
                    .where(
                        PurchaseOrderModel.requisition_id == requisition_id,
                        PurchaseOrderModel.award_batch_id == batch_id,
                    )
                    .order_by(PurchaseOrderModel.order_date, PurchaseOrderModel.supplier_id)
                )
                orders = session.execute(stmt).all()
                if orders and all(status in REVERSAL_STATUSES for _, status in orders):
                    generation += 1
                    continue
                if ledger.has_applied(requisition_id, LedgerEntryKind.AWARD, batch_id):
                    return batch_id, tuple(po_id for po_id, _ in orders)
                if generation:
                    logger.info(
                        "award_batch_reopened",
                        extra={"requested_batch_id": requested_id, "award_batch_id": batch_id},
                    )
                return batch_id, None
        finally:
            session.close()
