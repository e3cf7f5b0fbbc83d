"""
Requisitions Module Service (``sourcing_modules.requisitions.service``).

Responsibility
--------------
Create and cancel requisitions and expose their counters and ledger.

Architecture position
---------------------
**Modules layer** -- each public method owns its transaction through
``run_with_conflict_retry`` and returns frozen DTOs, never ORM objects.

Failure modes
-------------
* Invalid input or inactive product  -> ``ValidationError`` subclass,
  logged as ``requisition_create_rejected``.
* Cancel from a status other than PendingQuotation/Quoted, or with open
  purchase order quantity  -> ``InvalidTransitionError``.
* Concurrent writers exhausting the retry budget  -> ``OptimisticLockError``.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from sourcing_config.schema import SourcingConfig
from sourcing_kernel.domain.actor import ActorContext
from sourcing_kernel.domain.clock import Clock, SystemClock
from sourcing_kernel.domain.collaborators import MasterDataLookup, ReferenceKind, require_active
from sourcing_kernel.exceptions import (
    InvalidQuantityError,
    InvalidTransitionError,
    ValidationError,
)
from sourcing_kernel.logging_config import LogContext, get_logger
from sourcing_kernel.models.audit_record import AuditAction
from sourcing_kernel.services.audit_trail import AuditTrail
from sourcing_kernel.services.conflict_retry import run_with_conflict_retry
from sourcing_modules.requisitions.ledger import AGGREGATE_TYPE, RequisitionLedger
from sourcing_modules.requisitions.models import (
    LedgerEntry,
    RequiredProductLineInput,
    Requisition,
    RequisitionStatus,
)
from sourcing_modules.requisitions.orm import RequiredProductLineModel, RequisitionModel
from sourcing_modules.requisitions.workflows import REQUISITION_WORKFLOW

logger = get_logger("modules.requisitions.service")


class RequisitionService:
    """
    Entry point for requisition lifecycle operations.

    Counter reconciliation is not exposed here: quotations, purchase orders
    and receipts drive it through ``RequisitionLedger``.
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

    def create_requisition(
        self,
        requesting_user_id: UUID,
        lines: Sequence[RequiredProductLineInput],
        actor: ActorContext,
        notes: str | None = None,
    ) -> Requisition:
        """
        Create a requisition in PendingQuotation with zeroed counters.

        Raises:
            ValidationError: No lines, duplicate product, or non-positive quantity.
            InactiveReferenceError: A product is unknown or inactive.
        """
        try:
            self._validate_lines(lines)
        except ValidationError as exc:
            logger.warning(
                "requisition_create_rejected",
                extra={"error_code": exc.code, "reason": str(exc)},
            )
            raise

        def _create(session: Session) -> Requisition:
            requisition = RequisitionModel(
                requesting_user_id=requesting_user_id,
                status=RequisitionStatus.PENDING_QUOTATION.value,
                notes=notes,
                created_by_id=actor.actor_id,
            )
            requisition.lines = [
                RequiredProductLineModel(
                    product_id=line.product_id,
                    product_name=line.product_name,
                    required_quantity=line.required_quantity,
                    purchased_quantity=Decimal("0"),
                    pending_po_quantity=Decimal("0"),
                    notes=line.notes,
                    created_by_id=actor.actor_id,
                )
                for line in lines
            ]
            session.add(requisition)
            session.flush()
            AuditTrail(session, self._clock).record(
                AGGREGATE_TYPE,
                requisition.id,
                AuditAction.REQUISITION_CREATED,
                actor,
                after=RequisitionStatus.PENDING_QUOTATION.value,
                payload={
                    "lines": [
                        {"product_id": line.product_id, "required_quantity": line.required_quantity}
                        for line in lines
                    ],
                },
            )
            return requisition.to_dto()

        dto = run_with_conflict_retry(
            self._session_factory,
            _create,
            entity_type="requisition",
            entity_id="new",
            max_attempts=self._config.max_conflict_retries,
            backoff_seconds=self._config.conflict_backoff_seconds,
        )
        logger.info(
            "requisition_created",
            extra={
                "requisition_id": str(dto.id),
                "line_count": len(dto.lines),
                "actor_id": str(actor.actor_id),
            },
        )
        return dto

    def get_requisition(self, requisition_id: UUID) -> Requisition:
        session = self._session_factory()
        try:
            return RequisitionLedger(session, self._clock).load(requisition_id).to_dto()
        finally:
            session.close()

    def ledger_history(self, requisition_id: UUID) -> list[LedgerEntry]:
        """Applied reconciliation steps, oldest first."""
        session = self._session_factory()
        try:
            ledger = RequisitionLedger(session, self._clock)
            ledger.load(requisition_id)
            return [entry.to_dto() for entry in ledger.entries(requisition_id)]
        finally:
            session.close()

    def cancel_requisition(self, requisition_id: UUID, actor: ActorContext) -> Requisition:
        """
        Cancel a requisition that has no open purchase order quantity.

        Raises:
            InvalidTransitionError: Status is not PendingQuotation/Quoted, or a
                line still has pending purchase order quantity.
        """
        target = RequisitionStatus.CANCELED.value

        def _cancel(session: Session) -> Requisition:
            requisition = RequisitionLedger(session, self._clock).load(requisition_id)
            current = requisition.status
            if REQUISITION_WORKFLOW.find(current, target) is None:
                raise InvalidTransitionError("requisition", requisition_id, current, target)
            if any(line.pending_po_quantity > 0 for line in requisition.lines):
                raise InvalidTransitionError("requisition", requisition_id, current, target)

            requisition.status = target
            requisition.touch(actor.actor_id)
            AuditTrail(session, self._clock).record_status_change(
                AGGREGATE_TYPE, requisition.id, actor, before=current, after=target,
            )
            session.flush()
            return requisition.to_dto()

        with LogContext.bind(requisition_id=requisition_id, actor_id=actor.actor_id):
            try:
                dto = run_with_conflict_retry(
                    self._session_factory,
                    _cancel,
                    entity_type="requisition",
                    entity_id=requisition_id,
                    max_attempts=self._config.max_conflict_retries,
                    backoff_seconds=self._config.conflict_backoff_seconds,
                )
            except ValidationError as exc:
                logger.warning(
                    "requisition_cancel_rejected",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                raise
            logger.info("requisition_canceled", extra={"requisition_id": str(requisition_id)})
            return dto

    def _validate_lines(self, lines: Sequence[RequiredProductLineInput]) -> None:
        if not lines:
            raise ValidationError("A requisition needs at least one product line")
        seen: set[str] = set()
        for line in lines:
            if line.product_id in seen:
                raise ValidationError(f"Duplicate product {line.product_id} in requisition")
            seen.add(line.product_id)
            if line.required_quantity <= 0:
                raise InvalidQuantityError("required_quantity", line.required_quantity)
            require_active(self._master_data, ReferenceKind.PRODUCT, line.product_id)
