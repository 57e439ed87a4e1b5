"""
SHA-256 helpers for the audit chain, document snapshots and signature payloads.

Every digest here is recomputed later (chain validation, signature
verification), so the byte form must never depend on dict order, float
formatting or timezone rendering.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_MARKER = "GENESIS"


def _canonical_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        # 100.00 and 100 are the same amount
        return str(value.normalize())
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"cannot hash value of type {type(value).__name__}")


def canonical_json(data: Any) -> str:
    """Sorted keys, no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_canonical_value)


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    return _sha256(canonical_json(payload))


def hash_text(text: str) -> str:
    """Digest of a rendered document body."""
    return _sha256(text)


def hash_audit_event(
    tenant_id: str,
    seq: int,
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Digest of one audit event, linked to its predecessor.

    The tenant and sequence number are part of the digest, so an event
    cannot be moved to another tenant or position without breaking the
    chain.
    """
    return _sha256(
        "|".join((
            str(tenant_id),
            str(seq),
            entity_type,
            str(entity_id),
            action,
            payload_hash,
            prev_hash or GENESIS_MARKER,
        ))
    )
