"""
Sourcing Configuration Schema (``sourcing_config.schema``).

Defines the structure and defaults for the sourcing core.  Values are loaded
from YAML at runtime through ``sourcing_config.get_active_config()``.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Self

from sourcing_kernel.logging_config import get_logger

logger = get_logger("config.schema")


@dataclass(frozen=True)
class SourcingConfig:
    """
    Configuration schema for the sourcing core.

    Field defaults reproduce the long-standing behaviour of the purchasing
    desk.  Override per deployment in YAML:

        default_lead_time_days: 21
        max_conflict_retries: 8
    """

    # Award commit: expected delivery when no accepted offer carries an ETA
    default_lead_time_days: int = 14

    # Optimistic concurrency
    max_conflict_retries: int = 5
    conflict_backoff_seconds: float = 0.0

    # Awarding more than the net remaining need
    require_over_order_acknowledgement: bool = True

    # Quotation statuses whose offers are eligible for comparison and award
    comparable_quotation_statuses: tuple[str, ...] = (
        "Received",
        "PartiallyAwarded",
        "Awarded",
    )

    # Purchase order statuses in which goods may be received
    receivable_po_statuses: tuple[str, ...] = (
        "ConfirmedBySupplier",
        "PartiallyDelivered",
        "AwaitingFutureDelivery",
    )

    def __post_init__(self):
        if self.default_lead_time_days < 0:
            raise ValueError("default_lead_time_days must be >= 0")
        if self.max_conflict_retries < 1:
            raise ValueError("max_conflict_retries must be >= 1")
        if self.conflict_backoff_seconds < 0:
            raise ValueError("conflict_backoff_seconds must be >= 0")
        logger.debug(
            "sourcing_config_initialized",
            extra={
                "default_lead_time_days": self.default_lead_time_days,
                "max_conflict_retries": self.max_conflict_retries,
                "require_over_order_acknowledgement": self.require_over_order_acknowledgement,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the standard defaults."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g. parsed YAML)."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown sourcing config keys: {unknown}")
        logger.info(
            "sourcing_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        values = dict(data)
        for key in ("comparable_quotation_statuses", "receivable_po_statuses"):
            if key in values:
                values[key] = tuple(values[key])
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("comparable_quotation_statuses", "receivable_po_statuses"):
            data[key] = list(data[key])
        return data
