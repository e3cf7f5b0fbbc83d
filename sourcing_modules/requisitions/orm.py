"""
SQLAlchemy ORM persistence models for the Requisitions module.

Responsibility
--------------
Persist requisitions (aggregate root), their required product lines, and
the append-only ledger of counter reconciliation steps.

Invariants enforced
-------------------
* Quantities use ``Decimal`` (Numeric(38,9)) -- NEVER float.
* ``RequisitionModel.version`` guards every write to the aggregate,
  including writes that only touch lines (see ``VersionedMixin.touch``).
* One line per product per requisition.
* One ledger entry per (requisition, kind, source_key): a reconciliation
  step is applied at most once.
* Master-data references (products) are ``String(100)`` with no FK.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sourcing_kernel.db.base import Base, TrackedBase, UUIDString, VersionedMixin


class RequisitionModel(TrackedBase, VersionedMixin):
    """
    A requisition and its demand counters.

    Maps to the ``Requisition`` DTO in ``sourcing_modules.requisitions.models``.
    """

    __tablename__ = "sourcing_requisitions"

    __table_args__ = (
        Index("idx_requisition_status", "status"),
        Index("idx_requisition_requester", "requesting_user_id"),
    )

    requesting_user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="PendingQuotation")
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    lines: Mapped[list["RequiredProductLineModel"]] = relationship(
        "RequiredProductLineModel",
        back_populates="requisition",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RequiredProductLineModel.product_id",
    )

    def line_for(self, product_id: str) -> "RequiredProductLineModel | None":
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def to_dto(self):
        from sourcing_modules.requisitions.models import Requisition, RequisitionStatus

        return Requisition(
            id=self.id,
            requesting_user_id=self.requesting_user_id,
            status=RequisitionStatus(self.status),
            version=self.version,
            notes=self.notes,
            lines=tuple(line.to_dto() for line in self.lines),
        )


class RequiredProductLineModel(TrackedBase):
    """A required product line with its pending and purchased counters."""

    __tablename__ = "sourcing_required_product_lines"

    __table_args__ = (
        UniqueConstraint("requisition_id", "product_id", name="uq_required_line_product"),
        Index("idx_required_line_requisition", "requisition_id"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        ForeignKey("sourcing_requisitions.id"), nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    required_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    purchased_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    pending_po_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    requisition: Mapped["RequisitionModel"] = relationship(
        "RequisitionModel",
        back_populates="lines",
    )

    def to_dto(self):
        from sourcing_modules.requisitions.models import RequiredProductLine

        return RequiredProductLine(
            id=self.id,
            requisition_id=self.requisition_id,
            product_id=self.product_id,
            required_quantity=self.required_quantity,
            purchased_quantity=self.purchased_quantity,
            pending_po_quantity=self.pending_po_quantity,
            product_name=self.product_name,
            notes=self.notes,
        )


class RequisitionLedgerEntryModel(Base):
    """
    Append-only record of a counter reconciliation step.

    Written in the same transaction as the counter mutation; its unique key
    is the idempotency guard for retries.
    """

    __tablename__ = "sourcing_requisition_ledger"

    __table_args__ = (
        UniqueConstraint(
            "requisition_id", "kind", "source_key", name="uq_requisition_ledger_step"
        ),
        Index("idx_requisition_ledger_requisition", "requisition_id"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        ForeignKey("sourcing_requisitions.id"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    source_key: Mapped[str] = mapped_column(String(200), nullable=False)
    deltas: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    def to_dto(self):
        from sourcing_modules.requisitions.models import LedgerEntry, LedgerEntryKind

        return LedgerEntry(
            id=self.id,
            requisition_id=self.requisition_id,
            kind=LedgerEntryKind(self.kind),
            source_key=self.source_key,
            deltas=dict(self.deltas or {}),
            applied_at=self.applied_at,
            actor_id=self.actor_id,
        )
