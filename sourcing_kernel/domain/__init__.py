"""
Pure domain layer.

Immutable value objects and protocols with NO dependencies on the ORM,
the database or wall-clock time.
"""

from sourcing_kernel.domain.actor import ActorContext
from sourcing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from sourcing_kernel.domain.values import AdditionalCost, AdditionalCostType
from sourcing_kernel.domain.collaborators import (
    MasterDataLookup,
    ReferenceKind,
    ReferenceStatus,
    StockCondition,
    StockDeltaResult,
    StockLedger,
)

__all__ = [
    "ActorContext",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "MasterDataLookup",
    "ReferenceKind",
    "ReferenceStatus",
    "StockCondition",
    "StockDeltaResult",
    "StockLedger",
    "AdditionalCost",
    "AdditionalCostType",
]
