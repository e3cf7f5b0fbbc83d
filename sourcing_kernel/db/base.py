"""
Declarative bases shared by every sourcing table.

- ``Base``: uuid4 primary key ``id``; ``Decimal`` annotations map to
  ``Numeric(38, 9)`` so quantities and prices never pass through float.
- ``TrackedBase``: creator/updater ids and server-side timestamps.
- ``VersionedMixin``: marks an aggregate root (requisition, quotation,
  purchase order).  Its ``version`` column is SQLAlchemy's
  ``version_id_col``, so an UPDATE written from a stale read matches no row
  and the flush raises ``StaleDataError``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID kept as its 36-character text form so SQLite and PostgreSQL agree."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        return None if value is None else str(value)

    def process_result_value(self, value: Any, dialect: Any) -> UUID | None:
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)


class TrackedBase(Base):
    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
    created_by_id: Mapped[UUID]
    updated_by_id: Mapped[UUID | None]


class VersionedMixin:
    """
    Optimistic compare-and-swap on the aggregate root row.

    Any write to the aggregate, including one that only changes owned lines,
    must call ``touch()`` so the root row is rewritten under the version that
    was read.
    """

    version: Mapped[int] = mapped_column(Integer, default=1)

    @declared_attr.directive
    def __mapper_args__(cls) -> dict:
        return {"version_id_col": cls.__table__.c.version, "version_id_generator": False}

    def touch(self, actor_id: UUID) -> None:
        self.version = (self.version or 0) + 1
        self.updated_by_id = actor_id
