"""
Module: sourcing_kernel.models.audit_record
Responsibility: ORM persistence for the per-aggregate audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.
Invariants enforced:
    - Audit records are append-only.
    - seq is unique and contiguous per (aggregate_type, aggregate_id).  The
      aggregate's own optimistic version check serialises writers, so two
      transactions can never both append seq N for the same aggregate.
    - hash = H(aggregate_type | aggregate_id | seq | action | payload_hash | prev_hash).
Audit relevance:
    Every status transition and every counter mutation produces one record
    carrying actor, timestamp, aggregate, field, before and after.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sourcing_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Creation
    REQUISITION_CREATED = "requisition_created"
    QUOTATION_REQUESTED = "quotation_requested"
    PURCHASE_ORDER_CREATED = "purchase_order_created"

    # Status
    STATUS_CHANGED = "status_changed"

    # Counters and quantities
    COUNTER_CHANGED = "counter_changed"
    RECEIPT_APPLIED = "receipt_applied"
    STOCK_MISSING_RECORDED = "stock_missing_recorded"

    # Purchase order edits
    LINES_AMENDED = "lines_amended"
    ORIGINAL_SNAPSHOT_TAKEN = "original_snapshot_taken"
    SUPPLIER_SOLUTION_RECORDED = "supplier_solution_recorded"

    # Quotation
    OFFERS_RECEIVED = "offers_received"
    OFFER_AWARDED = "offer_awarded"


class AuditRecord(Base):
    """
    Audit record with a per-aggregate hash chain.

    Guarantees:
        - prev_hash is None only for the first record of an aggregate.
        - before/after hold the field's value as canonical JSON-safe data.
    """

    __tablename__ = "sourcing_audit_records"
    __table_args__ = (
        UniqueConstraint("aggregate_type", "aggregate_id", "seq", name="uq_audit_aggregate_seq"),
        Index("idx_audit_aggregate", "aggregate_type", "aggregate_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    aggregate_type: Mapped[str] = mapped_column(String(50), nullable=False)
    aggregate_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)

    # Field that changed (e.g. "status", "pending_po_quantity")
    field: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Owned entity the field belongs to, if not the root (e.g. a line id)
    entity_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before: Mapped[Any] = mapped_column(JSON, nullable=True)
    after: Mapped[Any] = mapped_column(JSON, nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditRecord {self.action} on {self.aggregate_type}:{self.aggregate_id}#{self.seq}>"

    @property
    def is_genesis(self) -> bool:
        """First record in this aggregate's chain."""
        return self.prev_hash is None
