"""
Requisition Ledger (``sourcing_modules.requisitions.ledger``).

Responsibility
--------------
Apply every counter reconciliation step to a requisition -- award,
confirmation, receipt credit, cancellation/rejection reversal and order
amendment -- and re-derive the requisition status afterwards.

Architecture position
---------------------
**Modules layer** -- flush-only service working inside a requisition-scoped
transaction opened by the caller through ``run_with_conflict_retry``.
Purchase orders and receipts call in with plain quantities
(``OrderLineQuantities``); this module never imports them.

Invariants enforced
-------------------
* purchased_quantity >= 0 and pending_po_quantity >= 0 at all times;
  decrements are floored at zero (and logged when the floor engages).
* purchased_quantity changes only through confirmation, receipt credit or
  reversal.
* Each (kind, source_key) is applied at most once per requisition: the
  ledger entry is written in the same transaction as the counters, so a
  retried step finds it and changes nothing.
* Every counter and status change is written to the audit trail.

Status rules
------------
* award          -> POInProgress if any line has purchased < required,
                    else Completed.
* confirmation   -> Completed if every line has purchased >= required.
* receipt credit -> Completed if every line has purchased >= required.
* reversal       -> Quoted if the requisition is Completed/POInProgress
                    and any line has purchased + pending < required.
* amendment      -> unchanged.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from sourcing_kernel.domain.actor import ActorContext
from sourcing_kernel.domain.clock import Clock
from sourcing_kernel.exceptions import RequisitionNotFoundError
from sourcing_kernel.logging_config import get_logger
from sourcing_kernel.services.audit_trail import AuditTrail
from sourcing_kernel.services.base import BaseService
from sourcing_kernel.utils.hashing import to_json_safe
from sourcing_modules.requisitions.models import (
    LedgerEntryKind,
    LedgerOutcome,
    OrderLineQuantities,
    RequisitionStatus,
)
from sourcing_modules.requisitions.orm import (
    RequiredProductLineModel,
    RequisitionLedgerEntryModel,
    RequisitionModel,
)
from sourcing_modules.requisitions.workflows import REQUISITION_WORKFLOW

logger = get_logger("modules.requisitions.ledger")

ZERO = Decimal("0")

AGGREGATE_TYPE = "requisition"


class RequisitionLedger(BaseService):
    """Counter reconciliation for one requisition inside the caller's transaction."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._audit = AuditTrail(session, self._clock)

    # =========================================================================
    # Lookup
    # =========================================================================

    def load(self, requisition_id: UUID) -> RequisitionModel:
        requisition = self._session.get(RequisitionModel, requisition_id)
        if requisition is None:
            raise RequisitionNotFoundError(requisition_id)
        return requisition

    def has_applied(self, requisition_id: UUID, kind: LedgerEntryKind, source_key: str) -> bool:
        stmt = select(RequisitionLedgerEntryModel.id).where(
            RequisitionLedgerEntryModel.requisition_id == requisition_id,
            RequisitionLedgerEntryModel.kind == kind.value,
            RequisitionLedgerEntryModel.source_key == source_key,
        )
        return self._session.scalars(stmt).first() is not None

    def entries(self, requisition_id: UUID) -> list[RequisitionLedgerEntryModel]:
        stmt = (
            select(RequisitionLedgerEntryModel)
            .where(RequisitionLedgerEntryModel.requisition_id == requisition_id)
            .order_by(RequisitionLedgerEntryModel.applied_at, RequisitionLedgerEntryModel.kind)
        )
        return list(self._session.scalars(stmt))

    # =========================================================================
    # Steps
    # =========================================================================

    def apply_award(
        self,
        requisition: RequisitionModel,
        source_key: str,
        awarded: Mapping[str, Decimal],
        actor: ActorContext,
    ) -> LedgerOutcome:
        """Add awarded quantities to pending_po_quantity."""
        kind = LedgerEntryKind.AWARD
        if self.has_applied(requisition.id, kind, source_key):
            return self._skipped(requisition, kind, source_key)

        status_before = RequisitionStatus(requisition.status)
        pending: dict[str, Decimal] = {}
        for product_id, quantity in awarded.items():
            line = self._line(requisition, product_id, kind)
            if line is None:
                continue
            pending[product_id] = self._adjust(requisition, line, "pending_po_quantity", quantity, actor, kind)

        if any(q > ZERO for q in pending.values()):
            target = (
                RequisitionStatus.COMPLETED
                if self._all_purchased(requisition)
                else RequisitionStatus.PO_IN_PROGRESS
            )
            self._set_status(requisition, target, actor, kind)

        return self._commit_step(requisition, kind, source_key, actor, status_before, pending, {})

    def apply_confirmation(
        self,
        requisition: RequisitionModel,
        source_key: str,
        lines: Iterable[OrderLineQuantities],
        actor: ActorContext,
    ) -> LedgerOutcome:
        """purchased += received; pending -= ordered (floored)."""
        kind = LedgerEntryKind.CONFIRMATION
        if self.has_applied(requisition.id, kind, source_key):
            return self._skipped(requisition, kind, source_key)

        status_before = RequisitionStatus(requisition.status)
        pending: dict[str, Decimal] = defaultdict(lambda: ZERO)
        purchased: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for product_id, group in _group_by_product(lines).items():
            line = self._line(requisition, product_id, kind)
            if line is None:
                continue
            received = sum((q.received for q in group), ZERO)
            ordered = sum((q.ordered for q in group), ZERO)
            if received:
                purchased[product_id] += self._adjust(requisition, line, "purchased_quantity", received, actor, kind)
            pending[product_id] += self._adjust(requisition, line, "pending_po_quantity", -ordered, actor, kind)

        over = self._complete_if_satisfied(requisition, actor, kind)
        return self._commit_step(
            requisition, kind, source_key, actor, status_before, dict(pending), dict(purchased), over
        )

    def apply_receipt_credit(
        self,
        requisition: RequisitionModel,
        source_key: str,
        credits: Mapping[str, Decimal],
        actor: ActorContext,
    ) -> LedgerOutcome:
        """purchased += ok quantity received after confirmation."""
        kind = LedgerEntryKind.RECEIPT
        if self.has_applied(requisition.id, kind, source_key):
            return self._skipped(requisition, kind, source_key)

        status_before = RequisitionStatus(requisition.status)
        purchased: dict[str, Decimal] = {}
        for product_id, quantity in credits.items():
            if quantity <= ZERO:
                continue
            line = self._line(requisition, product_id, kind)
            if line is None:
                continue
            purchased[product_id] = self._adjust(requisition, line, "purchased_quantity", quantity, actor, kind)

        over = self._complete_if_satisfied(requisition, actor, kind)
        return self._commit_step(requisition, kind, source_key, actor, status_before, {}, purchased, over)

    def apply_reversal(
        self,
        requisition: RequisitionModel,
        source_key: str,
        lines: Iterable[OrderLineQuantities],
        reached_confirmation: bool,
        actor: ActorContext,
    ) -> LedgerOutcome:
        """
        Undo a canceled or rejected purchase order's effect on the counters.

        After confirmation: purchased -= received, pending += max(0, outstanding).
        Before confirmation: pending -= ordered.
        """
        kind = LedgerEntryKind.REVERSAL
        if self.has_applied(requisition.id, kind, source_key):
            return self._skipped(requisition, kind, source_key)

        status_before = RequisitionStatus(requisition.status)
        pending: dict[str, Decimal] = defaultdict(lambda: ZERO)
        purchased: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for product_id, group in _group_by_product(lines).items():
            line = self._line(requisition, product_id, kind)
            if line is None:
                continue
            if reached_confirmation:
                received = sum((q.received for q in group), ZERO)
                outstanding = sum((max(ZERO, q.net_outstanding) for q in group), ZERO)
                if received:
                    purchased[product_id] += self._adjust(
                        requisition, line, "purchased_quantity", -received, actor, kind
                    )
                if outstanding:
                    pending[product_id] += self._adjust(
                        requisition, line, "pending_po_quantity", outstanding, actor, kind
                    )
            else:
                ordered = sum((q.ordered for q in group), ZERO)
                pending[product_id] += self._adjust(
                    requisition, line, "pending_po_quantity", -ordered, actor, kind
                )

        current = RequisitionStatus(requisition.status)
        if current in (RequisitionStatus.COMPLETED, RequisitionStatus.PO_IN_PROGRESS) and any(
            line.purchased_quantity + line.pending_po_quantity < line.required_quantity
            for line in requisition.lines
        ):
            self._set_status(requisition, RequisitionStatus.QUOTED, actor, kind)

        return self._commit_step(
            requisition, kind, source_key, actor, status_before, dict(pending), dict(purchased)
        )

    def apply_amendment(
        self,
        requisition: RequisitionModel,
        source_key: str,
        pending_deltas: Mapping[str, Decimal],
        actor: ActorContext,
    ) -> LedgerOutcome:
        """Shift pending_po_quantity by an order edit's ordered-quantity delta."""
        kind = LedgerEntryKind.AMENDMENT
        if self.has_applied(requisition.id, kind, source_key):
            return self._skipped(requisition, kind, source_key)

        status_before = RequisitionStatus(requisition.status)
        pending: dict[str, Decimal] = {}
        for product_id, delta in pending_deltas.items():
            if not delta:
                continue
            line = self._line(requisition, product_id, kind)
            if line is None:
                continue
            pending[product_id] = self._adjust(requisition, line, "pending_po_quantity", delta, actor, kind)

        return self._commit_step(requisition, kind, source_key, actor, status_before, pending, {})

    # =========================================================================
    # Internals
    # =========================================================================

    def _line(
        self,
        requisition: RequisitionModel,
        product_id: str,
        kind: LedgerEntryKind,
    ) -> RequiredProductLineModel | None:
        line = requisition.line_for(product_id)
        if line is None:
            logger.warning(
                "ledger_product_not_on_requisition",
                extra={
                    "requisition_id": str(requisition.id),
                    "product_id": product_id,
                    "step": kind.value,
                },
            )
        return line

    def _adjust(
        self,
        requisition: RequisitionModel,
        line: RequiredProductLineModel,
        field: str,
        delta: Decimal,
        actor: ActorContext,
        kind: LedgerEntryKind,
    ) -> Decimal:
        """Apply ``delta`` to a counter, flooring at zero.  Returns the applied delta."""
        before: Decimal = getattr(line, field)
        after = before + delta
        if after < ZERO:
            logger.warning(
                "requisition_counter_floored",
                extra={
                    "requisition_id": str(requisition.id),
                    "product_id": line.product_id,
                    "field": field,
                    "before": str(before),
                    "requested_delta": str(delta),
                    "step": kind.value,
                },
            )
            after = ZERO
        if after == before:
            return ZERO

        setattr(line, field, after)
        line.updated_by_id = actor.actor_id
        self._audit.record_counter_change(
            AGGREGATE_TYPE,
            requisition.id,
            actor,
            field=field,
            entity_ref=line.product_id,
            before=before,
            after=after,
            step=kind.value,
        )
        return after - before

    def _all_purchased(self, requisition: RequisitionModel) -> bool:
        return all(line.purchased_quantity >= line.required_quantity for line in requisition.lines)

    def _complete_if_satisfied(
        self,
        requisition: RequisitionModel,
        actor: ActorContext,
        kind: LedgerEntryKind,
    ) -> tuple[str, ...]:
        over = tuple(
            line.product_id
            for line in requisition.lines
            if line.purchased_quantity > line.required_quantity
        )
        if over:
            logger.warning(
                "requisition_over_fulfilment",
                extra={
                    "requisition_id": str(requisition.id),
                    "products": list(over),
                    "step": kind.value,
                },
            )
        if self._all_purchased(requisition):
            self._set_status(requisition, RequisitionStatus.COMPLETED, actor, kind)
        return over

    def _set_status(
        self,
        requisition: RequisitionModel,
        target: RequisitionStatus,
        actor: ActorContext,
        kind: LedgerEntryKind,
    ) -> None:
        current = requisition.status
        if current == target.value:
            return
        if REQUISITION_WORKFLOW.find(current, target.value) is None:
            logger.warning(
                "requisition_status_change_skipped",
                extra={
                    "requisition_id": str(requisition.id),
                    "from_status": current,
                    "to_status": target.value,
                    "step": kind.value,
                },
            )
            return
        requisition.status = target.value
        self._audit.record_status_change(
            AGGREGATE_TYPE,
            requisition.id,
            actor,
            before=current,
            after=target.value,
            step=kind.value,
        )
        logger.info(
            "requisition_status_changed",
            extra={
                "requisition_id": str(requisition.id),
                "from_status": current,
                "to_status": target.value,
                "step": kind.value,
            },
        )

    def _commit_step(
        self,
        requisition: RequisitionModel,
        kind: LedgerEntryKind,
        source_key: str,
        actor: ActorContext,
        status_before: RequisitionStatus,
        pending: dict[str, Decimal],
        purchased: dict[str, Decimal],
        over: tuple[str, ...] = (),
    ) -> LedgerOutcome:
        pending = {k: v for k, v in pending.items() if v}
        purchased = {k: v for k, v in purchased.items() if v}
        status_after = RequisitionStatus(requisition.status)

        requisition.touch(actor.actor_id)
        self._session.add(
            RequisitionLedgerEntryModel(
                requisition_id=requisition.id,
                kind=kind.value,
                source_key=source_key,
                deltas=to_json_safe(
                    {
                        "pending_po_quantity": pending,
                        "purchased_quantity": purchased,
                        "status": [status_before.value, status_after.value],
                        "over_fulfilled": list(over),
                    }
                ),
                applied_at=self._clock.now(),
                actor_id=actor.actor_id,
            )
        )
        self._session.flush()

        logger.info(
            "requisition_ledger_step_applied",
            extra={
                "requisition_id": str(requisition.id),
                "step": kind.value,
                "source_key": source_key,
                "pending_deltas": {k: str(v) for k, v in pending.items()},
                "purchased_deltas": {k: str(v) for k, v in purchased.items()},
                "status_before": status_before.value,
                "status_after": status_after.value,
            },
        )
        return LedgerOutcome(
            requisition_id=requisition.id,
            kind=kind,
            source_key=source_key,
            applied=True,
            status_before=status_before,
            status_after=status_after,
            pending_deltas=pending,
            purchased_deltas=purchased,
            over_fulfilled_products=over,
        )

    def _skipped(
        self,
        requisition: RequisitionModel,
        kind: LedgerEntryKind,
        source_key: str,
    ) -> LedgerOutcome:
        logger.info(
            "requisition_ledger_step_already_applied",
            extra={
                "requisition_id": str(requisition.id),
                "step": kind.value,
                "source_key": source_key,
            },
        )
        status = RequisitionStatus(requisition.status)
        return LedgerOutcome(
            requisition_id=requisition.id,
            kind=kind,
            source_key=source_key,
            applied=False,
            status_before=status,
            status_after=status,
        )


def _group_by_product(lines: Iterable[OrderLineQuantities]) -> dict[str, list[OrderLineQuantities]]:
    grouped: dict[str, list[OrderLineQuantities]] = defaultdict(list)
    for line in lines:
        grouped[line.product_id].append(line)
    return dict(grouped)
