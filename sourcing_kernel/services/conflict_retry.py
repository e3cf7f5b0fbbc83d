"""
Conflict retry -- run one aggregate transaction with optimistic retry.

Responsibility:
    Execute a unit of work against a single aggregate in its own short
    transaction, committing on success and re-running the whole unit from a
    fresh session when the optimistic version check (or the database's
    serializable isolation) reports a concurrent writer.

Architecture position:
    Kernel > Services.  The ONLY place module services open and commit
    transactions for aggregate mutations.

Invariants enforced:
    - No last-write-wins: a stale writer never overwrites; it re-reads and
      re-applies its change.
    - Bounded: after ``max_attempts`` conflicts, OptimisticLockError
      (a ConflictError) is raised and the caller retries the operation.

Failure modes:
    - OptimisticLockError when every attempt conflicts.
    - Any other exception rolls the attempt back and propagates unchanged;
      domain errors are never retried.

Usage:
    dto = run_with_conflict_retry(
        session_factory,
        lambda session: _apply(session, po_id),
        entity_type="purchase_order",
        entity_id=po_id,
    )
"""

import time
from collections.abc import Callable
from typing import TypeVar
from uuid import UUID

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from sourcing_kernel.exceptions import OptimisticLockError
from sourcing_kernel.logging_config import get_logger

logger = get_logger("services.conflict_retry")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5

# PostgreSQL serialization_failure / deadlock_detected
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def is_serialization_failure(exc: DBAPIError) -> bool:
    """True when the database aborted the transaction because of a concurrent writer."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


def run_with_conflict_retry(
    session_factory: sessionmaker[Session],
    operation: Callable[[Session], T],
    *,
    entity_type: str,
    entity_id: UUID | str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_seconds: float = 0.0,
) -> T:
    """
    Run ``operation`` in a fresh transaction, retrying on version conflicts.

    Preconditions:
        ``operation`` is re-runnable: it re-reads everything it needs from
        the session it is given and keeps no state between attempts.
    Postconditions:
        On return, the operation's writes are committed exactly once.

    Raises:
        OptimisticLockError: After ``max_attempts`` conflicting attempts.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        session = session_factory()
        try:
            result = operation(session)
            session.commit()
            if attempt > 1:
                logger.info(
                    "conflict_retry_succeeded",
                    extra={
                        "entity_type": entity_type,
                        "entity_id": str(entity_id),
                        "attempt": attempt,
                    },
                )
            return result
        except StaleDataError:
            session.rollback()
            reason = "stale_version"
        except DBAPIError as exc:
            session.rollback()
            if not is_serialization_failure(exc):
                raise
            reason = "serialization_failure"
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.warning(
            "optimistic_conflict_detected",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "attempt": attempt,
                "max_attempts": max_attempts,
                "reason": reason,
            },
        )
        if backoff_seconds and attempt < max_attempts:
            time.sleep(backoff_seconds * attempt)

    logger.error(
        "optimistic_conflict_retries_exhausted",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "attempts": max_attempts,
        },
    )
    raise OptimisticLockError(entity_type, entity_id, max_attempts)
