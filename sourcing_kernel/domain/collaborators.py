"""
External collaborator protocols.

Responsibility:
    Define the narrow interfaces the sourcing core consumes from systems it
    does not own: master-data lookups (products, suppliers, warehouses) and
    the physical stock ledger.

Architecture position:
    Kernel > Domain.  Pure protocols and value objects; implementations live
    with the host application (and as in-memory fakes in the test suite).

Invariants enforced:
    - Mutating operations fail fast on a reference that does not exist or is
      inactive (``require_active``).
    - The stock ledger is invoked once per non-zero ok/damaged delta, with a
      stable ``reference`` the ledger can use to de-duplicate retried calls.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol, runtime_checkable

from sourcing_kernel.exceptions import InactiveReferenceError


class ReferenceKind(str, Enum):
    """Kinds of master data the core validates against."""

    PRODUCT = "product"
    SUPPLIER = "supplier"
    WAREHOUSE = "warehouse"


@dataclass(frozen=True)
class ReferenceStatus:
    """Result of a master-data lookup."""

    exists: bool
    is_active: bool

    @property
    def is_usable(self) -> bool:
        return self.exists and self.is_active


MISSING_REFERENCE = ReferenceStatus(exists=False, is_active=False)


@runtime_checkable
class MasterDataLookup(Protocol):
    """Read-only master-data lookup."""

    def lookup(self, kind: ReferenceKind, reference_id: str) -> ReferenceStatus:
        ...


class StockCondition(str, Enum):
    """Condition bucket a stock delta is booked into."""

    OK = "ok"
    DAMAGED = "damaged"


@dataclass(frozen=True)
class StockDeltaResult:
    """Stock level before and after a delta was applied."""

    quantity_before: Decimal
    quantity_after: Decimal


@runtime_checkable
class StockLedger(Protocol):
    """Write interface of the physical stock ledger."""

    def apply_stock_delta(
        self,
        product_id: str,
        warehouse_id: str,
        quantity: Decimal,
        condition: StockCondition,
        *,
        reference: str,
    ) -> StockDeltaResult:
        ...


def require_active(
    master_data: MasterDataLookup,
    kind: ReferenceKind,
    reference_id: str,
) -> None:
    """Raise InactiveReferenceError unless the reference exists and is active."""
    status = master_data.lookup(kind, reference_id)
    if not status.is_usable:
        raise InactiveReferenceError(kind.value, reference_id, exists=status.exists)
