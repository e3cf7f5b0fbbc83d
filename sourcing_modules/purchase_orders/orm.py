"""
SQLAlchemy ORM persistence models for the Purchase Orders module.

Responsibility
--------------
Persist purchase orders (aggregate root) and their lines.

Invariants enforced
-------------------
* Quantities and prices use ``Decimal`` (Numeric(38,9)) -- NEVER float.
* ``PurchaseOrderModel.version`` guards every write, including line-only
  writes such as receipts.
* At most one order per (requisition, award batch, supplier).
* Lines are never deleted; removed lines keep ``is_active = False``.
* received + damaged + missing <= ordered on every line (enforced by the
  receipt engine before flush).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sourcing_kernel.db.base import TrackedBase, UUIDString, VersionedMixin


class PurchaseOrderModel(TrackedBase, VersionedMixin):
    """
    A purchase order.

    Maps to the ``PurchaseOrder`` DTO in ``sourcing_modules.purchase_orders.models``.
    """

    __tablename__ = "sourcing_purchase_orders"

    __table_args__ = (
        UniqueConstraint(
            "requisition_id", "award_batch_id", "supplier_id", name="uq_po_award_batch_supplier"
        ),
        Index("idx_po_requisition", "requisition_id"),
        Index("idx_po_supplier", "supplier_id"),
        Index("idx_po_status", "status"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        ForeignKey("sourcing_requisitions.id"), nullable=False
    )
    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quotation_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("sourcing_quotations.id"), nullable=True
    )
    award_batch_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Pending")
    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    products_subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    additional_costs: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    completion_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    original_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    amendments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    supplier_solution_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    supplier_solution_details: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    lines: Mapped[list["PurchaseOrderLineModel"]] = relationship(
        "PurchaseOrderLineModel",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseOrderLineModel.line_number",
    )

    @property
    def active_lines(self) -> list["PurchaseOrderLineModel"]:
        return [line for line in self.lines if line.is_active]

    def line_by_id(self, line_id: UUID) -> "PurchaseOrderLineModel | None":
        for line in self.lines:
            if line.id == line_id:
                return line
        return None

    def line_for(self, product_id: str) -> "PurchaseOrderLineModel | None":
        for line in self.active_lines:
            if line.product_id == product_id:
                return line
        return None

    def to_dto(self):
        from sourcing_kernel.domain.values import costs_from_json
        from sourcing_modules.purchase_orders.models import (
            POStatus,
            PurchaseOrder,
            SupplierSolutionType,
        )

        return PurchaseOrder(
            id=self.id,
            requisition_id=self.requisition_id,
            supplier_id=self.supplier_id,
            status=POStatus(self.status),
            version=self.version,
            order_date=self.order_date,
            expected_delivery_date=self.expected_delivery_date,
            products_subtotal=self.products_subtotal,
            total_amount=self.total_amount,
            additional_costs=costs_from_json(self.additional_costs),
            quotation_id=self.quotation_id,
            award_batch_id=self.award_batch_id,
            notes=self.notes,
            completion_date=self.completion_date,
            confirmed_at=self.confirmed_at,
            revision=self.revision,
            original_snapshot=dict(self.original_snapshot) if self.original_snapshot else None,
            supplier_solution_type=(
                SupplierSolutionType(self.supplier_solution_type)
                if self.supplier_solution_type
                else None
            ),
            supplier_solution_details=self.supplier_solution_details,
            lines=tuple(line.to_dto() for line in self.lines),
        )


class PurchaseOrderLineModel(TrackedBase):
    """A purchase order line with its receipt accounting."""

    __tablename__ = "sourcing_purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_number", name="uq_po_line_number"),
        Index("idx_po_line_po", "purchase_order_id"),
        Index("idx_po_line_product", "product_id"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("sourcing_purchase_orders.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    ordered_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    received_damaged_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    received_missing_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    source_offer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="lines",
    )

    def to_quantities(self):
        from sourcing_modules.requisitions.models import OrderLineQuantities

        return OrderLineQuantities(
            product_id=self.product_id,
            ordered=self.ordered_quantity,
            received=self.received_quantity,
            damaged=self.received_damaged_quantity,
            missing=self.received_missing_quantity,
        )

    def to_dto(self):
        from sourcing_modules.purchase_orders.models import PurchaseOrderLine

        return PurchaseOrderLine(
            id=self.id,
            purchase_order_id=self.purchase_order_id,
            line_number=self.line_number,
            product_id=self.product_id,
            ordered_quantity=self.ordered_quantity,
            unit_price=self.unit_price,
            subtotal=self.subtotal,
            received_quantity=self.received_quantity,
            received_damaged_quantity=self.received_damaged_quantity,
            received_missing_quantity=self.received_missing_quantity,
            product_name=self.product_name,
            source_offer_id=self.source_offer_id,
            notes=self.notes,
            is_active=self.is_active,
        )
