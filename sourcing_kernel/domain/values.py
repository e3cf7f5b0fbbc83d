"""
Value objects shared by quotations and purchase orders.

Pure and immutable.  Amounts are Decimal; floats are rejected at
construction so rounding never depends on binary representation.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any


class AdditionalCostType(str, Enum):
    """Kinds of surcharge a supplier may quote on top of product prices."""

    LOGISTICS = "logistics"
    TAX = "tax"
    INSURANCE = "insurance"
    OTHER = "other"


@dataclass(frozen=True)
class AdditionalCost:
    """A quotation- or order-level surcharge."""

    description: str
    amount: Decimal
    cost_type: AdditionalCostType = AdditionalCostType.OTHER

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            raise TypeError(f"AdditionalCost.amount must be Decimal, got {type(self.amount).__name__}")
        if self.amount < 0:
            raise ValueError(f"AdditionalCost.amount must be >= 0, got {self.amount}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "amount": str(self.amount),
            "type": self.cost_type.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdditionalCost":
        return cls(
            description=data.get("description", ""),
            amount=Decimal(str(data["amount"])),
            cost_type=AdditionalCostType(data.get("type", AdditionalCostType.OTHER.value)),
        )


def sum_additional_costs(costs: Iterable[AdditionalCost]) -> Decimal:
    """Total of all surcharges (Decimal zero when empty)."""
    return sum((c.amount for c in costs), Decimal("0"))


def costs_to_json(costs: Iterable[AdditionalCost]) -> list[dict[str, Any]]:
    return [c.to_dict() for c in costs]


def costs_from_json(data: list[dict[str, Any]] | None) -> tuple[AdditionalCost, ...]:
    return tuple(AdditionalCost.from_dict(item) for item in (data or []))
