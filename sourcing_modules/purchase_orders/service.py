"""
Purchase Orders Module Service (``sourcing_modules.purchase_orders.service``).

Responsibility
--------------
Create, edit and move purchase orders through their lifecycle, and carry
each lifecycle effect over to the originating requisition's counters.

Architecture position
---------------------
**Modules layer**.  Every mutation runs as two short transactions, each
under ``run_with_conflict_retry``:

1. the purchase order transaction (status, lines, audit);
2. a requisition transaction applying the matching ledger step
   (confirmation, reversal or amendment).

If step 2 fails the order keeps its new state and ``resync`` re-applies
whatever ledger steps are missing; the ledger entry keys make that safe.

Invariants enforced
-------------------
* Only manual transitions of ``PURCHASE_ORDER_WORKFLOW`` are accepted.
* completion_date is stamped once, on entering Completed, Canceled or
  RejectedBySupplier; confirmed_at once, on first confirmation.
* original_snapshot is written at most once.
* Lines are soft-removed, never deleted.
* Every order puts its ordered quantities into pending_po_quantity exactly
  once: award orders through the award batch step, other orders when they
  are created.  Edits queue one amendment per revision; ``resync`` applies
  every revision the requisition has not seen.

Failure modes
-------------
* Unknown order  -> ``PurchaseOrderNotFoundError``.
* Refused transition or edit outside the editable statuses  ->
  ``InvalidTransitionError``.
* Invalid line input or inactive reference  -> ``ValidationError`` subclass.
* Retries exhausted  -> ``OptimisticLockError``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from sourcing_config.schema import SourcingConfig
from sourcing_kernel.domain.actor import ActorContext
from sourcing_kernel.domain.clock import Clock, SystemClock
from sourcing_kernel.domain.collaborators import MasterDataLookup, ReferenceKind, require_active
from sourcing_kernel.domain.values import (
    AdditionalCost,
    costs_from_json,
    costs_to_json,
    sum_additional_costs,
)
from sourcing_kernel.exceptions import (
    InvalidPriceError,
    InvalidQuantityError,
    InvalidTransitionError,
    PurchaseOrderNotFoundError,
    SourcingKernelError,
    ValidationError,
)
from sourcing_kernel.logging_config import LogContext, get_logger
from sourcing_kernel.models.audit_record import AuditAction
from sourcing_kernel.services.audit_trail import AuditTrail
from sourcing_kernel.services.conflict_retry import run_with_conflict_retry
from sourcing_kernel.utils.hashing import to_json_safe
from sourcing_modules.purchase_orders.models import (
    POStatus,
    POTransitionResult,
    PurchaseOrder,
    PurchaseOrderLineInput,
    SupplierSolutionType,
)
from sourcing_modules.purchase_orders.orm import PurchaseOrderLineModel, PurchaseOrderModel
from sourcing_modules.purchase_orders.workflows import (
    COMPLETION_STATUSES,
    EDITABLE_STATUSES,
    PURCHASE_ORDER_WORKFLOW,
    REVERSAL_STATUSES,
    SNAPSHOT_STATUSES,
    SOLUTION_STATUSES,
)
from sourcing_modules.requisitions.ledger import RequisitionLedger
from sourcing_modules.requisitions.models import LedgerEntryKind, LedgerOutcome, OrderLineQuantities

logger = get_logger("modules.purchase_orders.service")

AGGREGATE_TYPE = "purchase_order"

ZERO = Decimal("0")


class PurchaseOrderService:
    """
    Entry point for purchase order operations.

    Contract
    --------
    * Every public method returns frozen DTOs; ORM objects never escape.
    * Domain failures raise ``SourcingKernelError`` subclasses and are logged
      as ``*_rejected``.
    """

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
    # Creation
    # =========================================================================

    def create_purchase_order(
        self,
        requisition_id: UUID,
        supplier_id: str,
        lines: Sequence[PurchaseOrderLineInput],
        actor: ActorContext,
        quotation_id: UUID | None = None,
        award_batch_id: str | None = None,
        expected_delivery_date: date | None = None,
        additional_costs: Sequence[AdditionalCost] = (),
        notes: str | None = None,
    ) -> PurchaseOrder:
        """
        Create a Pending purchase order.

        An order created outside an award adds its lines to the requisition's
        pending_po_quantity in the same transaction (ledger step
        ``award/<po_id>``); award commit credits pending for its own orders.
        """
        try:
            require_active(self._master_data, ReferenceKind.SUPPLIER, supplier_id)
            self._validate_lines(lines)
        except ValidationError as exc:
            logger.warning(
                "purchase_order_create_rejected",
                extra={
                    "requisition_id": str(requisition_id),
                    "supplier_id": supplier_id,
                    "error_code": exc.code,
                    "reason": str(exc),
                },
            )
            raise

        if expected_delivery_date is None:
            expected_delivery_date = self._clock.today() + timedelta(
                days=self._config.default_lead_time_days
            )

        def _create(session: Session) -> PurchaseOrder:
            ledger = RequisitionLedger(session, self._clock)
            requisition = ledger.load(requisition_id)
            for line in lines:
                if requisition.line_for(line.product_id) is None:
                    raise ValidationError(
                        f"Product {line.product_id} is not part of requisition {requisition_id}"
                    )

            subtotal = sum((line.ordered_quantity * line.unit_price for line in lines), ZERO)
            po = PurchaseOrderModel(
                requisition_id=requisition_id,
                supplier_id=supplier_id,
                quotation_id=quotation_id,
                award_batch_id=award_batch_id,
                status=POStatus.PENDING.value,
                order_date=self._clock.now(),
                expected_delivery_date=expected_delivery_date,
                products_subtotal=subtotal,
                additional_costs=costs_to_json(additional_costs),
                total_amount=subtotal + sum_additional_costs(additional_costs),
                notes=notes,
                revision=0,
                created_by_id=actor.actor_id,
            )
            po.lines = [
                PurchaseOrderLineModel(
                    line_number=number,
                    product_id=line.product_id,
                    product_name=line.product_name,
                    ordered_quantity=line.ordered_quantity,
                    unit_price=line.unit_price,
                    subtotal=line.ordered_quantity * line.unit_price,
                    source_offer_id=line.source_offer_id,
                    notes=line.notes,
                    is_active=True,
                    created_by_id=actor.actor_id,
                )
                for number, line in enumerate(lines, start=1)
            ]
            session.add(po)
            session.flush()
            AuditTrail(session, self._clock).record(
                AGGREGATE_TYPE,
                po.id,
                AuditAction.PURCHASE_ORDER_CREATED,
                actor,
                after=POStatus.PENDING.value,
                payload={
                    "requisition_id": requisition_id,
                    "supplier_id": supplier_id,
                    "award_batch_id": award_batch_id,
                    "lines": [
                        {"product_id": line.product_id, "ordered_quantity": line.ordered_quantity}
                        for line in lines
                    ],
                    "total_amount": po.total_amount,
                },
            )
            if award_batch_id is None:
                ledger.apply_award(
                    requisition,
                    str(po.id),
                    {line.product_id: line.ordered_quantity for line in lines},
                    actor,
                )
            return po.to_dto()

        with LogContext.bind(requisition_id=requisition_id, actor_id=actor.actor_id):
            dto = self._run(_create, "requisition", requisition_id)
            logger.info(
                "purchase_order_created",
                extra={
                    "purchase_order_id": str(dto.id),
                    "supplier_id": supplier_id,
                    "award_batch_id": award_batch_id,
                    "line_count": len(dto.lines),
                    "total_amount": str(dto.total_amount),
                },
            )
            return dto

    # =========================================================================
    # Edits
    # =========================================================================

    def update_purchase_order(
        self,
        po_id: UUID,
        lines: Sequence[PurchaseOrderLineInput],
        actor: ActorContext,
        additional_costs: Sequence[AdditionalCost] | None = None,
        notes: str | None = None,
        expected_delivery_date: date | None = None,
    ) -> PurchaseOrder:
        """
        Replace an editable order's lines, matched by product.

        Existing lines are updated in place, lines for products no longer
        listed are soft-removed and new products are appended.  The
        per-product ordered-quantity delta is queued on the order under its
        revision and carried to the requisition's pending_po_quantity.
        """
        self._validate_lines(lines)

        def _update(session: Session) -> tuple[PurchaseOrder, dict[str, Decimal]]:
            po = self._load(session, po_id)
            if po.status not in EDITABLE_STATUSES:
                raise InvalidTransitionError(AGGREGATE_TYPE, po_id, po.status, po.status)

            requisition = RequisitionLedger(session, self._clock).load(po.requisition_id)
            for line in lines:
                if requisition.line_for(line.product_id) is None:
                    raise ValidationError(
                        f"Product {line.product_id} is not part of requisition {po.requisition_id}"
                    )

            audit = AuditTrail(session, self._clock)
            if po.status in SNAPSHOT_STATUSES and po.original_snapshot is None:
                po.original_snapshot = self._snapshot(po)
                audit.record(
                    AGGREGATE_TYPE,
                    po.id,
                    AuditAction.ORIGINAL_SNAPSHOT_TAKEN,
                    actor,
                    after=po.original_snapshot,
                )

            deltas = self._apply_line_changes(po, lines, actor)

            if additional_costs is not None:
                po.additional_costs = costs_to_json(additional_costs)
            if notes is not None:
                po.notes = notes
            if expected_delivery_date is not None:
                po.expected_delivery_date = expected_delivery_date
            self._recalculate_totals(po)

            po.revision += 1
            if deltas:
                po.amendments = [
                    *(po.amendments or []),
                    to_json_safe({"revision": po.revision, "pending_deltas": deltas}),
                ]
            po.touch(actor.actor_id)
            audit.record(
                AGGREGATE_TYPE,
                po.id,
                AuditAction.LINES_AMENDED,
                actor,
                field="lines",
                after=[line.product_id for line in po.active_lines],
                payload={"revision": po.revision, "ordered_deltas": deltas},
            )
            session.flush()
            return po.to_dto(), deltas

        with LogContext.bind(purchase_order_id=po_id, actor_id=actor.actor_id):
            try:
                dto, deltas = self._run(_update, AGGREGATE_TYPE, po_id)
            except ValidationError as exc:
                logger.warning(
                    "purchase_order_update_rejected",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                raise
            logger.info(
                "purchase_order_updated",
                extra={
                    "purchase_order_id": str(po_id),
                    "revision": dto.revision,
                    "ordered_deltas": {k: str(v) for k, v in deltas.items()},
                    "total_amount": str(dto.total_amount),
                },
            )
            if deltas:
                self._reconcile(po_id, actor)
            return dto

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def transition(self, po_id: UUID, to_status: POStatus | str, actor: ActorContext) -> POTransitionResult:
        """
        Apply a manual lifecycle transition.

        Entering ConfirmedBySupplier applies the confirmation step to the
        requisition; entering Canceled or RejectedBySupplier applies the
        reversal step.
        """
        target = POStatus(to_status)

        def _transition(session: Session) -> tuple[PurchaseOrder, POStatus]:
            po = self._load(session, po_id)
            current = po.status
            rule = PURCHASE_ORDER_WORKFLOW.find(current, target.value)
            if rule is None or rule.derived:
                raise InvalidTransitionError(AGGREGATE_TYPE, po_id, current, target.value)
            self._set_status(session, po, target, actor)
            session.flush()
            return po.to_dto(), POStatus(current)

        with LogContext.bind(purchase_order_id=po_id, actor_id=actor.actor_id):
            try:
                dto, from_status = self._run(_transition, AGGREGATE_TYPE, po_id)
            except ValidationError as exc:
                logger.warning(
                    "purchase_order_transition_rejected",
                    extra={
                        "to_status": target.value,
                        "error_code": exc.code,
                        "reason": str(exc),
                    },
                )
                raise
            logger.info(
                "purchase_order_status_changed",
                extra={
                    "purchase_order_id": str(po_id),
                    "from_status": from_status.value,
                    "to_status": target.value,
                },
            )

            outcomes: tuple[LedgerOutcome, ...] = ()
            if target == POStatus.CONFIRMED_BY_SUPPLIER or target.value in REVERSAL_STATUSES:
                outcomes = self._reconcile(po_id, actor)
            return POTransitionResult(
                purchase_order=dto,
                from_status=from_status,
                to_status=target,
                requisition_outcomes=outcomes,
            )

    def record_supplier_solution(
        self,
        po_id: UUID,
        solution_type: SupplierSolutionType | str,
        details: str,
        actor: ActorContext,
    ) -> PurchaseOrder:
        """
        Record how the supplier settles a short or imperfect delivery.

        FutureDelivery on a PartiallyDelivered order moves it to
        AwaitingFutureDelivery.
        """
        solution = SupplierSolutionType(solution_type)

        def _record(session: Session) -> PurchaseOrder:
            po = self._load(session, po_id)
            if po.status not in SOLUTION_STATUSES:
                raise InvalidTransitionError(AGGREGATE_TYPE, po_id, po.status, po.status)
            before = po.supplier_solution_type
            po.supplier_solution_type = solution.value
            po.supplier_solution_details = details
            AuditTrail(session, self._clock).record(
                AGGREGATE_TYPE,
                po.id,
                AuditAction.SUPPLIER_SOLUTION_RECORDED,
                actor,
                field="supplier_solution_type",
                before=before,
                after=solution.value,
                payload={"details": details},
            )
            if (
                solution == SupplierSolutionType.FUTURE_DELIVERY
                and po.status == POStatus.PARTIALLY_DELIVERED.value
            ):
                self._set_status(session, po, POStatus.AWAITING_FUTURE_DELIVERY, actor)
            else:
                po.touch(actor.actor_id)
            session.flush()
            return po.to_dto()

        with LogContext.bind(purchase_order_id=po_id, actor_id=actor.actor_id):
            dto = self._run(_record, AGGREGATE_TYPE, po_id)
            logger.info(
                "supplier_solution_recorded",
                extra={
                    "purchase_order_id": str(po_id),
                    "solution_type": solution.value,
                    "status": dto.status.value,
                },
            )
            return dto

    def resync(self, po_id: UUID, actor: ActorContext) -> tuple[LedgerOutcome, ...]:
        """Re-apply any requisition ledger step this order is owed."""
        with LogContext.bind(purchase_order_id=po_id, actor_id=actor.actor_id):
            return self._reconcile(po_id, actor)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_purchase_order(self, po_id: UUID) -> PurchaseOrder:
        session = self._session_factory()
        try:
            return self._load(session, po_id).to_dto()
        finally:
            session.close()

    def list_for_requisition(self, requisition_id: UUID) -> list[PurchaseOrder]:
        session = self._session_factory()
        try:
            stmt = (
                select(PurchaseOrderModel)
                .where(PurchaseOrderModel.requisition_id == requisition_id)
                .order_by(PurchaseOrderModel.order_date, PurchaseOrderModel.supplier_id)
            )
            return [po.to_dto() for po in session.scalars(stmt)]
        finally:
            session.close()

    def find_by_award_key(
        self,
        requisition_id: UUID,
        award_batch_id: str,
        supplier_id: str,
    ) -> PurchaseOrder | None:
        session = self._session_factory()
        try:
            stmt = select(PurchaseOrderModel).where(
                PurchaseOrderModel.requisition_id == requisition_id,
                PurchaseOrderModel.award_batch_id == award_batch_id,
                PurchaseOrderModel.supplier_id == supplier_id,
            )
            po = session.scalars(stmt).first()
            return po.to_dto() if po is not None else None
        finally:
            session.close()

    # =========================================================================
    # Requisition reconciliation
    # =========================================================================

    def _reconcile(self, po_id: UUID, actor: ActorContext) -> tuple[LedgerOutcome, ...]:
        """
        Apply the confirmation, amendment and reversal steps this order owes.

        Confirmation always precedes reversal so a canceled confirmed order is
        reversed against counters that reflect its confirmation.  Receipts
        credit purchased through their own steps, so confirmation re-applied
        here counts no received quantity.
        """
        po = self.get_purchase_order(po_id)
        quantities = [line.to_quantities() for line in po.active_lines]

        def _apply(session: Session) -> tuple[LedgerOutcome, ...]:
            ledger = RequisitionLedger(session, self._clock)
            requisition = ledger.load(po.requisition_id)
            source_key = str(po.id)
            outcomes: list[LedgerOutcome] = []

            for amendment in sorted(_amendments(session, po.id), key=lambda a: a["revision"]):
                key = f"{po.id}:{amendment['revision']}"
                if ledger.has_applied(requisition.id, LedgerEntryKind.AMENDMENT, key):
                    continue
                deltas = {k: Decimal(v) for k, v in amendment["pending_deltas"].items()}
                outcomes.append(ledger.apply_amendment(requisition, key, deltas, actor))

            if po.confirmed_at is not None and not ledger.has_applied(
                requisition.id, LedgerEntryKind.CONFIRMATION, source_key
            ):
                confirmed = [
                    OrderLineQuantities(product_id=q.product_id, ordered=q.ordered)
                    for q in quantities
                ]
                outcomes.append(ledger.apply_confirmation(requisition, source_key, confirmed, actor))

            if po.status.value in REVERSAL_STATUSES and not ledger.has_applied(
                requisition.id, LedgerEntryKind.REVERSAL, source_key
            ):
                outcomes.append(
                    ledger.apply_reversal(
                        requisition,
                        source_key,
                        quantities,
                        reached_confirmation=po.confirmed_at is not None,
                        actor=actor,
                    )
                )
            return tuple(outcomes)

        try:
            outcomes = self._run(_apply, "requisition", po.requisition_id)
        except SourcingKernelError as exc:
            logger.error(
                "purchase_order_reconciliation_pending",
                extra={
                    "purchase_order_id": str(po_id),
                    "requisition_id": str(po.requisition_id),
                    "error_code": exc.code,
                    "reason": str(exc),
                },
            )
            raise
        if outcomes:
            logger.info(
                "purchase_order_reconciled",
                extra={
                    "purchase_order_id": str(po_id),
                    "requisition_id": str(po.requisition_id),
                    "steps": [o.kind.value for o in outcomes],
                },
            )
        return outcomes

    # =========================================================================
    # Internals
    # =========================================================================

    def _set_status(
        self,
        session: Session,
        po: PurchaseOrderModel,
        target: POStatus,
        actor: ActorContext,
    ) -> None:
        before = po.status
        po.status = target.value
        now = self._clock.now()
        if target.value in COMPLETION_STATUSES and po.completion_date is None:
            po.completion_date = now
        if target == POStatus.CONFIRMED_BY_SUPPLIER and po.confirmed_at is None:
            po.confirmed_at = now
        po.touch(actor.actor_id)
        AuditTrail(session, self._clock).record_status_change(
            AGGREGATE_TYPE, po.id, actor, before=before, after=target.value,
        )

    def _apply_line_changes(
        self,
        po: PurchaseOrderModel,
        lines: Sequence[PurchaseOrderLineInput],
        actor: ActorContext,
    ) -> dict[str, Decimal]:
        deltas: dict[str, Decimal] = {}
        wanted = {line.product_id: line for line in lines}

        for existing in po.active_lines:
            if existing.product_id not in wanted:
                existing.is_active = False
                existing.updated_by_id = actor.actor_id
                deltas[existing.product_id] = deltas.get(existing.product_id, ZERO) - existing.ordered_quantity

        next_number = max((line.line_number for line in po.lines), default=0) + 1
        for product_id, line in wanted.items():
            existing = po.line_for(product_id)
            if existing is None:
                po.lines.append(
                    PurchaseOrderLineModel(
                        line_number=next_number,
                        product_id=product_id,
                        product_name=line.product_name,
                        ordered_quantity=line.ordered_quantity,
                        unit_price=line.unit_price,
                        subtotal=line.ordered_quantity * line.unit_price,
                        source_offer_id=line.source_offer_id,
                        notes=line.notes,
                        is_active=True,
                        created_by_id=actor.actor_id,
                    )
                )
                next_number += 1
                deltas[product_id] = deltas.get(product_id, ZERO) + line.ordered_quantity
                continue

            delta = line.ordered_quantity - existing.ordered_quantity
            existing.ordered_quantity = line.ordered_quantity
            existing.unit_price = line.unit_price
            existing.subtotal = line.ordered_quantity * line.unit_price
            existing.product_name = line.product_name or existing.product_name
            existing.notes = line.notes
            existing.updated_by_id = actor.actor_id
            if delta:
                deltas[product_id] = deltas.get(product_id, ZERO) + delta

        return {k: v for k, v in deltas.items() if v}

    def _recalculate_totals(self, po: PurchaseOrderModel) -> None:
        subtotal = sum((line.subtotal for line in po.active_lines), ZERO)
        po.products_subtotal = subtotal
        po.total_amount = subtotal + sum_additional_costs(costs_from_json(po.additional_costs))

    def _snapshot(self, po: PurchaseOrderModel) -> dict[str, Any]:
        return to_json_safe(
            {
                "status": po.status,
                "lines": [
                    {
                        "line_number": line.line_number,
                        "product_id": line.product_id,
                        "product_name": line.product_name,
                        "ordered_quantity": line.ordered_quantity,
                        "unit_price": line.unit_price,
                        "subtotal": line.subtotal,
                        "notes": line.notes,
                    }
                    for line in po.active_lines
                ],
                "additional_costs": list(po.additional_costs or []),
                "products_subtotal": po.products_subtotal,
                "total_amount": po.total_amount,
                "notes": po.notes,
                "expected_delivery_date": po.expected_delivery_date,
                "taken_at": self._clock.now(),
            }
        )

    def _validate_lines(self, lines: Sequence[PurchaseOrderLineInput]) -> None:
        if not lines:
            raise ValidationError("A purchase order must have at least one line")
        seen: set[str] = set()
        for line in lines:
            if line.product_id in seen:
                raise ValidationError(f"Duplicate product {line.product_id} on purchase order")
            seen.add(line.product_id)
            require_active(self._master_data, ReferenceKind.PRODUCT, line.product_id)
            if line.ordered_quantity <= ZERO:
                raise InvalidQuantityError("ordered_quantity", line.ordered_quantity)
            if line.unit_price < ZERO:
                raise InvalidPriceError(line.product_id, line.unit_price)

    def _load(self, session: Session, po_id: UUID) -> PurchaseOrderModel:
        po = session.get(PurchaseOrderModel, po_id)
        if po is None:
            raise PurchaseOrderNotFoundError(po_id)
        return po

    def _run(self, operation, entity_type: str, entity_id: UUID):
        return run_with_conflict_retry(
            self._session_factory,
            operation,
            entity_type=entity_type,
            entity_id=entity_id,
            max_attempts=self._config.max_conflict_retries,
            backoff_seconds=self._config.conflict_backoff_seconds,
        )


def _amendments(session: Session, po_id: UUID) -> list[dict[str, Any]]:
    stmt = select(PurchaseOrderModel.amendments).where(PurchaseOrderModel.id == po_id)
    return session.scalars(stmt).first() or []
