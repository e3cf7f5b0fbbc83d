"""
AuditTrail -- append structured audit records in the caller's transaction.

Responsibility:
    Write one AuditRecord per status transition and per counter mutation,
    linked into a per-aggregate hash chain, and verify that chain on demand.

Architecture position:
    Kernel > Services.  Flush-only: records become durable together with the
    mutation they describe, or not at all.

Invariants enforced:
    - seq is contiguous per aggregate; prev_hash links to the previous
      record of the same aggregate.
    - hash = H(aggregate_type | aggregate_id | seq | action | payload_hash | prev_hash).

Failure modes:
    - AuditChainBrokenError from ``verify_chain`` on any hash mismatch.
    - IntegrityError on duplicate (aggregate, seq); only reachable when the
      aggregate's own version check was bypassed.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select

from sourcing_kernel.domain.actor import ActorContext
from sourcing_kernel.exceptions import AuditChainBrokenError
from sourcing_kernel.logging_config import get_logger
from sourcing_kernel.models.audit_record import AuditAction, AuditRecord
from sourcing_kernel.services.base import BaseService
from sourcing_kernel.utils.hashing import hash_audit_record, hash_payload, to_json_safe

logger = get_logger("services.audit_trail")


class AuditTrail(BaseService):
    """Audit sink backed by the ``sourcing_audit_records`` table."""

    def record(
        self,
        aggregate_type: str,
        aggregate_id: UUID,
        action: AuditAction,
        actor: ActorContext,
        *,
        field: str | None = None,
        before: Any = None,
        after: Any = None,
        entity_ref: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditRecord:
        """Append one record to the aggregate's chain."""
        last = self._last_record(aggregate_type, aggregate_id)
        seq = 1 if last is None else last.seq + 1
        prev_hash = None if last is None else last.hash

        safe_before = to_json_safe(before)
        safe_after = to_json_safe(after)
        body = {
            "field": field,
            "entity_ref": entity_ref,
            "before": safe_before,
            "after": safe_after,
            "actor_id": actor.actor_id,
            "actor_role": actor.role,
            "payload": payload or {},
        }
        payload_hash = hash_payload(body)

        record = AuditRecord(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            seq=seq,
            action=action.value,
            field=field,
            entity_ref=entity_ref,
            before=safe_before,
            after=safe_after,
            actor_id=actor.actor_id,
            actor_role=actor.role,
            occurred_at=self._clock.now(),
            payload=to_json_safe(payload) if payload else None,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=hash_audit_record(
                aggregate_type,
                str(aggregate_id),
                seq,
                action.value,
                payload_hash,
                prev_hash,
            ),
        )
        self._session.add(record)
        self._session.flush()

        logger.debug(
            "audit_record_appended",
            extra={
                "aggregate_type": aggregate_type,
                "aggregate_id": str(aggregate_id),
                "seq": seq,
                "action": action.value,
                "field": field,
            },
        )
        return record

    def record_status_change(
        self,
        aggregate_type: str,
        aggregate_id: UUID,
        actor: ActorContext,
        before: str,
        after: str,
        **payload: Any,
    ) -> AuditRecord:
        return self.record(
            aggregate_type,
            aggregate_id,
            AuditAction.STATUS_CHANGED,
            actor,
            field="status",
            before=before,
            after=after,
            payload=payload or None,
        )

    def record_counter_change(
        self,
        aggregate_type: str,
        aggregate_id: UUID,
        actor: ActorContext,
        field: str,
        entity_ref: str,
        before: Any,
        after: Any,
        **payload: Any,
    ) -> AuditRecord:
        return self.record(
            aggregate_type,
            aggregate_id,
            AuditAction.COUNTER_CHANGED,
            actor,
            field=field,
            entity_ref=entity_ref,
            before=before,
            after=after,
            payload=payload or None,
        )

    def history(self, aggregate_type: str, aggregate_id: UUID) -> list[AuditRecord]:
        """All records of one aggregate in chain order."""
        stmt = (
            select(AuditRecord)
            .where(
                AuditRecord.aggregate_type == aggregate_type,
                AuditRecord.aggregate_id == aggregate_id,
            )
            .order_by(AuditRecord.seq)
        )
        return list(self._session.scalars(stmt))

    def verify_chain(self, aggregate_type: str, aggregate_id: UUID) -> int:
        """
        Recompute every hash of an aggregate's chain.

        Returns:
            Number of records verified.

        Raises:
            AuditChainBrokenError: On the first record that does not verify.
        """
        prev_hash: str | None = None
        records = self.history(aggregate_type, aggregate_id)
        for expected_seq, record in enumerate(records, start=1):
            recomputed = hash_audit_record(
                record.aggregate_type,
                str(record.aggregate_id),
                record.seq,
                record.action,
                record.payload_hash,
                prev_hash,
            )
            if (
                record.seq != expected_seq
                or record.prev_hash != prev_hash
                or record.hash != recomputed
            ):
                logger.error(
                    "audit_chain_broken",
                    extra={
                        "aggregate_type": aggregate_type,
                        "aggregate_id": str(aggregate_id),
                        "seq": record.seq,
                    },
                )
                raise AuditChainBrokenError(aggregate_type, aggregate_id, record.seq)
            prev_hash = record.hash
        return len(records)

    def _last_record(self, aggregate_type: str, aggregate_id: UUID) -> AuditRecord | None:
        stmt = (
            select(AuditRecord)
            .where(
                AuditRecord.aggregate_type == aggregate_type,
                AuditRecord.aggregate_id == aggregate_id,
            )
            .order_by(AuditRecord.seq.desc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()
