"""
BaseService -- base for helpers that write inside a caller's transaction.

The requisition ledger, quotation awarding and the audit trail all run on a
session opened by a module service through ``run_with_conflict_retry``.
They flush; they never commit or roll back.
"""

from abc import ABC

from sqlalchemy.orm import Session

from sourcing_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    @property
    def session(self) -> Session:
        return self._session
