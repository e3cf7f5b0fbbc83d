"""
SQLAlchemy ORM persistence models for the Quotations module.

Responsibility
--------------
Persist quotations (aggregate root) and their offers.

Invariants enforced
-------------------
* Quantities and prices use ``Decimal`` (Numeric(38,9)) -- NEVER float.
* ``QuotationModel.version`` guards every write, including offer-only writes
  such as award propagation.
* One offer per product per quotation.
* ``awarded_quantity`` only grows.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sourcing_kernel.db.base import TrackedBase, VersionedMixin


class QuotationModel(TrackedBase, VersionedMixin):
    """
    A supplier quotation.

    Maps to the ``Quotation`` DTO in ``sourcing_modules.quotations.models``.
    """

    __tablename__ = "sourcing_quotations"

    __table_args__ = (
        Index("idx_quotation_requisition", "requisition_id"),
        Index("idx_quotation_supplier", "supplier_id"),
        Index("idx_quotation_status", "status"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        ForeignKey("sourcing_requisitions.id"), nullable=False
    )
    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Sent")
    request_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    response_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    received_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shipping_conditions: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    additional_costs: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    products_subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    offers: Mapped[list["OfferModel"]] = relationship(
        "OfferModel",
        back_populates="quotation",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OfferModel.product_id",
    )

    def offer_for(self, product_id: str) -> "OfferModel | None":
        for offer in self.offers:
            if offer.product_id == product_id:
                return offer
        return None

    def to_dto(self):
        from sourcing_kernel.domain.values import costs_from_json
        from sourcing_modules.quotations.models import Quotation, QuotationStatus

        return Quotation(
            id=self.id,
            requisition_id=self.requisition_id,
            supplier_id=self.supplier_id,
            status=QuotationStatus(self.status),
            version=self.version,
            request_date=self.request_date,
            response_deadline=self.response_deadline,
            received_date=self.received_date,
            shipping_conditions=self.shipping_conditions,
            notes=self.notes,
            additional_costs=costs_from_json(self.additional_costs),
            products_subtotal=self.products_subtotal,
            total_amount=self.total_amount,
            offers=tuple(offer.to_dto() for offer in self.offers),
        )


class OfferModel(TrackedBase):
    """A quoted product line (quotation detail)."""

    __tablename__ = "sourcing_offers"

    __table_args__ = (
        UniqueConstraint("quotation_id", "product_id", name="uq_offer_product"),
        Index("idx_offer_quotation", "quotation_id"),
        Index("idx_offer_product", "product_id"),
    )

    quotation_id: Mapped[UUID] = mapped_column(
        ForeignKey("sourcing_quotations.id"), nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[str] = mapped_column(String(300), nullable=False, default="")
    required_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    quoted_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    unit_price_quoted: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    estimated_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    conditions: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    awarded_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    quotation: Mapped["QuotationModel"] = relationship(
        "QuotationModel",
        back_populates="offers",
    )

    def to_dto(self):
        from sourcing_modules.quotations.models import Offer

        return Offer(
            id=self.id,
            quotation_id=self.quotation_id,
            product_id=self.product_id,
            required_quantity=self.required_quantity,
            quoted_quantity=self.quoted_quantity,
            unit_price_quoted=self.unit_price_quoted,
            awarded_quantity=self.awarded_quantity,
            estimated_delivery_date=self.estimated_delivery_date,
            product_name=self.product_name,
            conditions=self.conditions,
            notes=self.notes,
        )
