"""
Receiving Module Service (``sourcing_modules.receiving.service``).

Responsibility
--------------
Apply receipt events to confirmed purchase orders: account ok, damaged and
missing quantities per line, book ok and damaged stock, derive the order's
receiving status, and credit the requisition's purchased counter.

Architecture position
---------------------
**Modules layer**.  A receipt runs as two transactions under
``run_with_conflict_retry``:

1. purchase order transaction -- line accounting, receipt event row,
   stock ledger bookings, derived status, audit;
2. requisition transaction -- ledger step ``receipt/<event_id>``.

Invariants enforced
-------------------
* received + damaged + missing <= ordered on every line; overage raises
  ``ReceiptOverageError`` and nothing is written.
* An event id is applied at most once.  Re-submitting it returns
  ALREADY_APPLIED and only resumes a requisition step that never ran.
* The purchase order flush (version compare-and-swap) happens before any
  stock ledger call.  Each call carries a stable ``reference`` so a retried
  attempt can be de-duplicated by the ledger.
* Missing quantities are audit-only; they never reach the stock ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from sourcing_config.schema import SourcingConfig
from sourcing_engines.receipt_status import (
    LineAccounting,
    ReceiptDelta,
    apply_delta,
    derive_receipt_status,
    validate_delta,
)
from sourcing_kernel.domain.actor import ActorContext
from sourcing_kernel.domain.clock import Clock, SystemClock
from sourcing_kernel.domain.collaborators import (
    MasterDataLookup,
    ReferenceKind,
    StockCondition,
    StockLedger,
    require_active,
)
from sourcing_kernel.exceptions import (
    InvalidTransitionError,
    PurchaseOrderNotFoundError,
    SourcingKernelError,
    ValidationError,
)
from sourcing_kernel.logging_config import LogContext, get_logger
from sourcing_kernel.models.audit_record import AuditAction
from sourcing_kernel.services.audit_trail import AuditTrail
from sourcing_kernel.services.conflict_retry import run_with_conflict_retry
from sourcing_modules.purchase_orders.models import POStatus, PurchaseOrder
from sourcing_modules.purchase_orders.orm import PurchaseOrderModel
from sourcing_modules.purchase_orders.workflows import COMPLETION_STATUSES, PURCHASE_ORDER_WORKFLOW
from sourcing_modules.receiving.models import (
    ReceiptApplyStatus,
    ReceiptEventInput,
    ReceiptResult,
    StockMovement,
)
from sourcing_modules.receiving.orm import ReceiptEventLineModel, ReceiptEventModel
from sourcing_modules.requisitions.ledger import RequisitionLedger
from sourcing_modules.requisitions.models import LedgerOutcome

logger = get_logger("modules.receiving.service")

AGGREGATE_TYPE = "purchase_order"

ZERO = Decimal("0")


@dataclass(frozen=True)
class _AppliedReceipt:
    requisition_id: UUID
    po_status: POStatus
    movements: tuple[StockMovement, ...] = ()
    anomaly: str | None = None
    already_applied: bool = False


class ReceivingService:
    """Entry point for receipt reconciliation."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        master_data: MasterDataLookup,
        stock_ledger: StockLedger,
        clock: Clock | None = None,
        config: SourcingConfig | None = None,
    ):
        self._session_factory = session_factory
        self._master_data = master_data
        self._stock_ledger = stock_ledger
        self._clock = clock or SystemClock()
        self._config = config or SourcingConfig.with_defaults()

    def apply_receipt(self, event: ReceiptEventInput, actor: ActorContext) -> ReceiptResult:
        """
        Apply one receipt event.

        Raises:
            ValidationError: inactive warehouse, empty event, negative or
                all-zero line, unknown line.
            InvalidTransitionError: order not in a receivable status.
            ReceiptOverageError: a line would account for more than ordered.
            OptimisticLockError: retries exhausted.
        """
        with LogContext.bind(
            receipt_event_id=event.event_id,
            purchase_order_id=event.purchase_order_id,
            actor_id=actor.actor_id,
        ):
            try:
                self._precheck(event)
            except ValidationError as exc:
                logger.warning(
                    "receipt_rejected",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                raise

            logger.info(
                "receipt_started",
                extra={
                    "event_id": str(event.event_id),
                    "purchase_order_id": str(event.purchase_order_id),
                    "line_count": len(event.lines),
                },
            )

            try:
                applied = run_with_conflict_retry(
                    self._session_factory,
                    lambda session: self._apply_to_order(session, event, actor),
                    entity_type=AGGREGATE_TYPE,
                    entity_id=event.purchase_order_id,
                    max_attempts=self._config.max_conflict_retries,
                    backoff_seconds=self._config.conflict_backoff_seconds,
                )
            except IntegrityError:
                if not self._event_exists(event.event_id):
                    raise
                applied = self._already_applied(event)
            except SourcingKernelError as exc:
                logger.warning(
                    "receipt_rejected",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                raise

            outcome = self._credit_requisition(event.event_id, applied.requisition_id, actor)

            status = (
                ReceiptApplyStatus.ALREADY_APPLIED
                if applied.already_applied
                else ReceiptApplyStatus.APPLIED
            )
            logger.info(
                "receipt_applied" if not applied.already_applied else "receipt_already_applied",
                extra={
                    "event_id": str(event.event_id),
                    "purchase_order_status": applied.po_status.value,
                    "stock_movements": len(applied.movements),
                    "requisition_credited": outcome is not None and outcome.applied,
                },
            )
            return ReceiptResult(
                event_id=event.event_id,
                purchase_order_id=event.purchase_order_id,
                status=status,
                purchase_order_status=applied.po_status,
                stock_movements=applied.movements,
                requisition_outcome=outcome,
                anomaly=applied.anomaly,
                message=(
                    "Receipt already applied"
                    if applied.already_applied
                    else f"Purchase order is {applied.po_status.value}"
                ),
            )

    def recompute_receipt_status(self, po_id: UUID, actor: ActorContext) -> PurchaseOrder:
        """Re-derive a receiving order's status from its line accounting."""

        def _recompute(session: Session) -> PurchaseOrder:
            po = self._load(session, po_id)
            if po.status not in self._config.receivable_po_statuses:
                raise InvalidTransitionError(AGGREGATE_TYPE, po_id, po.status, "receive")
            self._derive_status(session, po, actor)
            session.flush()
            return po.to_dto()

        with LogContext.bind(purchase_order_id=po_id, actor_id=actor.actor_id):
            dto = run_with_conflict_retry(
                self._session_factory,
                _recompute,
                entity_type=AGGREGATE_TYPE,
                entity_id=po_id,
                max_attempts=self._config.max_conflict_retries,
                backoff_seconds=self._config.conflict_backoff_seconds,
            )
            logger.info(
                "receipt_status_recomputed",
                extra={"purchase_order_id": str(po_id), "status": dto.status.value},
            )
            return dto

    # =========================================================================
    # Purchase order transaction
    # =========================================================================

    def _apply_to_order(
        self,
        session: Session,
        event: ReceiptEventInput,
        actor: ActorContext,
    ) -> _AppliedReceipt:
        if session.get(ReceiptEventModel, event.event_id) is not None:
            return self._already_applied(event, session)

        po = self._load(session, event.purchase_order_id)
        if po.status not in self._config.receivable_po_statuses:
            raise InvalidTransitionError(AGGREGATE_TYPE, po.id, po.status, "receive")

        audit = AuditTrail(session, self._clock)
        record = ReceiptEventModel(
            id=event.event_id,
            purchase_order_id=po.id,
            requisition_id=po.requisition_id,
            receipt_date=event.receipt_date,
            receiving_user_id=event.receiving_user_id,
            target_warehouse_id=event.target_warehouse_id,
            notes=event.notes,
            requisition_credited=False,
            created_by_id=actor.actor_id,
        )

        event_lines: list[ReceiptEventLineModel] = []
        for item in event.lines:
            line = po.line_by_id(item.po_line_id)
            if line is None or not line.is_active:
                raise ValidationError(
                    f"Line {item.po_line_id} is not an active line of purchase order {po.id}"
                )
            before = LineAccounting(
                line_id=line.id,
                ordered=line.ordered_quantity,
                received=line.received_quantity,
                damaged=line.received_damaged_quantity,
                missing=line.received_missing_quantity,
            )
            after = apply_delta(
                before,
                ReceiptDelta(
                    line_id=line.id,
                    ok=item.ok_quantity,
                    damaged=item.damaged_quantity,
                    missing=item.missing_quantity,
                ),
            )
            line.received_quantity = after.received
            line.received_damaged_quantity = after.damaged
            line.received_missing_quantity = after.missing
            line.updated_by_id = actor.actor_id

            for field, old, new in (
                ("received_quantity", before.received, after.received),
                ("received_damaged_quantity", before.damaged, after.damaged),
                ("received_missing_quantity", before.missing, after.missing),
            ):
                if old != new:
                    audit.record(
                        AGGREGATE_TYPE,
                        po.id,
                        AuditAction.RECEIPT_APPLIED,
                        actor,
                        field=field,
                        entity_ref=line.product_id,
                        before=old,
                        after=new,
                        payload={"receipt_event_id": event.event_id},
                    )
            if item.missing_quantity > ZERO:
                audit.record(
                    AGGREGATE_TYPE,
                    po.id,
                    AuditAction.STOCK_MISSING_RECORDED,
                    actor,
                    field="missing_quantity",
                    entity_ref=line.product_id,
                    after=item.missing_quantity,
                    payload={
                        "receipt_event_id": event.event_id,
                        "warehouse_id": event.target_warehouse_id,
                    },
                )

            event_line = ReceiptEventLineModel(
                po_line_id=line.id,
                product_id=line.product_id,
                ok_quantity=item.ok_quantity,
                damaged_quantity=item.damaged_quantity,
                missing_quantity=item.missing_quantity,
                created_by_id=actor.actor_id,
            )
            record.lines.append(event_line)
            event_lines.append(event_line)

        po.touch(actor.actor_id)
        session.add(record)
        session.flush()

        movements: list[StockMovement] = []
        for event_line in event_lines:
            for condition, quantity in (
                (StockCondition.OK, event_line.ok_quantity),
                (StockCondition.DAMAGED, event_line.damaged_quantity),
            ):
                if quantity <= ZERO:
                    continue
                booked = self._stock_ledger.apply_stock_delta(
                    event_line.product_id,
                    event.target_warehouse_id,
                    quantity,
                    condition,
                    reference=f"receipt:{event.event_id}:{event_line.po_line_id}:{condition.value}",
                )
                if condition == StockCondition.OK:
                    event_line.ok_stock_before = booked.quantity_before
                    event_line.ok_stock_after = booked.quantity_after
                else:
                    event_line.damaged_stock_before = booked.quantity_before
                    event_line.damaged_stock_after = booked.quantity_after
                movements.append(
                    StockMovement(
                        po_line_id=event_line.po_line_id,
                        product_id=event_line.product_id,
                        condition=condition,
                        quantity=quantity,
                        quantity_before=booked.quantity_before,
                        quantity_after=booked.quantity_after,
                    )
                )

        anomaly = self._derive_status(session, po, actor)
        session.flush()
        return _AppliedReceipt(
            requisition_id=po.requisition_id,
            po_status=POStatus(po.status),
            movements=tuple(movements),
            anomaly=anomaly,
        )

    def _derive_status(self, session: Session, po: PurchaseOrderModel, actor: ActorContext) -> str | None:
        decision = derive_receipt_status(
            [
                LineAccounting(
                    line_id=line.id,
                    ordered=line.ordered_quantity,
                    received=line.received_quantity,
                    damaged=line.received_damaged_quantity,
                    missing=line.received_missing_quantity,
                )
                for line in po.active_lines
            ]
        )
        if decision.anomaly:
            logger.warning(
                "receipt_status_anomaly",
                extra={"purchase_order_id": str(po.id), "anomaly": decision.anomaly},
            )

        current = po.status
        target = decision.status.value
        if current == target:
            return decision.anomaly
        if PURCHASE_ORDER_WORKFLOW.find(current, target) is None:
            raise InvalidTransitionError(AGGREGATE_TYPE, po.id, current, target)

        po.status = target
        if target in COMPLETION_STATUSES and po.completion_date is None:
            po.completion_date = self._clock.now()
        po.touch(actor.actor_id)
        AuditTrail(session, self._clock).record_status_change(
            AGGREGATE_TYPE,
            po.id,
            actor,
            before=current,
            after=target,
            outstanding_lines=decision.outstanding_lines,
            lines_with_missing=decision.lines_with_missing,
        )
        logger.info(
            "purchase_order_status_derived",
            extra={
                "purchase_order_id": str(po.id),
                "from_status": current,
                "to_status": target,
            },
        )
        return decision.anomaly

    # =========================================================================
    # Requisition transaction
    # =========================================================================

    def _credit_requisition(
        self,
        event_id: UUID,
        requisition_id: UUID,
        actor: ActorContext,
    ) -> LedgerOutcome | None:
        def _credit(session: Session) -> LedgerOutcome | None:
            record = session.get(ReceiptEventModel, event_id)
            if record is None or record.requisition_credited:
                return None
            ledger = RequisitionLedger(session, self._clock)
            requisition = ledger.load(requisition_id)
            outcome = ledger.apply_receipt_credit(
                requisition, str(event_id), record.ok_by_product(), actor
            )
            record.requisition_credited = True
            session.flush()
            return outcome

        try:
            return run_with_conflict_retry(
                self._session_factory,
                _credit,
                entity_type="requisition",
                entity_id=requisition_id,
                max_attempts=self._config.max_conflict_retries,
                backoff_seconds=self._config.conflict_backoff_seconds,
            )
        except SourcingKernelError as exc:
            logger.error(
                "receipt_requisition_credit_pending",
                extra={
                    "event_id": str(event_id),
                    "requisition_id": str(requisition_id),
                    "error_code": exc.code,
                    "reason": str(exc),
                },
            )
            raise

    # =========================================================================
    # Internals
    # =========================================================================

    def _precheck(self, event: ReceiptEventInput) -> None:
        require_active(self._master_data, ReferenceKind.WAREHOUSE, event.target_warehouse_id)
        if not event.lines:
            raise ValidationError("A receipt must record at least one line")
        seen: set[UUID] = set()
        for item in event.lines:
            if item.po_line_id in seen:
                raise ValidationError(f"Line {item.po_line_id} appears twice in receipt {event.event_id}")
            seen.add(item.po_line_id)
            validate_delta(
                ReceiptDelta(
                    line_id=item.po_line_id,
                    ok=item.ok_quantity,
                    damaged=item.damaged_quantity,
                    missing=item.missing_quantity,
                )
            )

    def _already_applied(self, event: ReceiptEventInput, session: Session | None = None) -> _AppliedReceipt:
        own_session = session is None
        session = session or self._session_factory()
        try:
            record = session.get(ReceiptEventModel, event.event_id)
            po = self._load(session, record.purchase_order_id)
            logger.info(
                "receipt_duplicate_detected",
                extra={"event_id": str(event.event_id), "purchase_order_id": str(po.id)},
            )
            return _AppliedReceipt(
                requisition_id=po.requisition_id,
                po_status=POStatus(po.status),
                already_applied=True,
            )
        finally:
            if own_session:
                session.close()

    def _event_exists(self, event_id: UUID) -> bool:
        session = self._session_factory()
        try:
            return session.get(ReceiptEventModel, event_id) is not None
        finally:
            session.close()

    def _load(self, session: Session, po_id: UUID) -> PurchaseOrderModel:
        po = session.get(PurchaseOrderModel, po_id)
        if po is None:
            raise PurchaseOrderNotFoundError(po_id)
        return po
