"""
Canonical JSON and SHA-256 helpers.

Quantities are hashed by value, not by scale: ``Decimal("60")`` and
``Decimal("60.000000000")`` render to the same canonical text, which is what
makes award batch ids and audit payload hashes stable across reads from
``Numeric`` columns.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"cannot canonicalize {type(value).__name__}")


def canonicalize_json(data: Any) -> str:
    """Sorted-key, whitespace-free JSON text."""
    return json.dumps(data, default=_encode, sort_keys=True, separators=(",", ":"))


def to_json_safe(data: Any) -> Any:
    """Plain JSON structure suitable for a JSON column (Decimals become strings)."""
    return json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    return _sha256(canonicalize_json(payload))


def hash_audit_record(
    aggregate_type: str,
    aggregate_id: str,
    seq: int,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chain hash of one audit record; the first record links to ``GENESIS``."""
    return _sha256(
        "|".join(
            (aggregate_type, str(aggregate_id), str(seq), action, payload_hash, prev_hash or GENESIS)
        )
    )
