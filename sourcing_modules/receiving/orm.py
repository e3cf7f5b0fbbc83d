"""
SQLAlchemy ORM persistence models for the Receiving module.

Invariants enforced
-------------------
* Receipt events are append-only; the primary key is the caller's event id,
  so an event is stored at most once.
* ``requisition_credited`` flips to True once the requisition-side receipt
  step has been applied; it never flips back.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sourcing_kernel.db.base import TrackedBase, UUIDString


class ReceiptEventModel(TrackedBase):
    """One receipt applied to a purchase order."""

    __tablename__ = "sourcing_receipt_events"

    __table_args__ = (
        Index("idx_receipt_event_po", "purchase_order_id"),
        Index("idx_receipt_event_requisition", "requisition_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("sourcing_purchase_orders.id"), nullable=False
    )
    requisition_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)
    receiving_user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    target_warehouse_id: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    requisition_credited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    lines: Mapped[list["ReceiptEventLineModel"]] = relationship(
        "ReceiptEventLineModel",
        back_populates="event",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def ok_by_product(self) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = {}
        for line in self.lines:
            if line.ok_quantity:
                totals[line.product_id] = totals.get(line.product_id, Decimal("0")) + line.ok_quantity
        return totals


class ReceiptEventLineModel(TrackedBase):
    """Quantities one receipt recorded against one purchase order line."""

    __tablename__ = "sourcing_receipt_event_lines"

    __table_args__ = (
        Index("idx_receipt_line_event", "receipt_event_id"),
        Index("idx_receipt_line_po_line", "po_line_id"),
    )

    receipt_event_id: Mapped[UUID] = mapped_column(
        ForeignKey("sourcing_receipt_events.id"), nullable=False
    )
    po_line_id: Mapped[UUID] = mapped_column(
        ForeignKey("sourcing_purchase_order_lines.id"), nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    ok_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    damaged_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    missing_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    ok_stock_before: Mapped[Decimal | None] = mapped_column(nullable=True)
    ok_stock_after: Mapped[Decimal | None] = mapped_column(nullable=True)
    damaged_stock_before: Mapped[Decimal | None] = mapped_column(nullable=True)
    damaged_stock_after: Mapped[Decimal | None] = mapped_column(nullable=True)

    event: Mapped["ReceiptEventModel"] = relationship(
        "ReceiptEventModel",
        back_populates="lines",
    )
