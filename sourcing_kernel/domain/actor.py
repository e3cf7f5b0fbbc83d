"""
ActorContext -- explicit identity for every mutating call.

Authorization is a predicate evaluated by the calling service layer before a
sourcing operation is invoked.  The kernel only records who acted and in
which role.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class ActorContext:
    """The identity and role under which a mutation is performed."""

    actor_id: UUID
    role: str

    def __post_init__(self) -> None:
        if not self.role:
            raise ValueError("ActorContext.role must be non-empty")

    def __str__(self) -> str:
        return f"{self.role}:{self.actor_id}"
