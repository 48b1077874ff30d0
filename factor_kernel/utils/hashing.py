"""
Content hashes for version snapshots and the audit chain.

A version snapshot is hashed once, when the operation is sent, and the
hash is stored beside the snapshot.  Audit entries hash their payload and
link to the previous entry's hash.  Both go through ``canonicalize_json``
so that a stored document can be re-hashed later and compared.
"""

import hashlib
import json
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS_HASH = "GENESIS"

# Top-level sections every version snapshot carries
SNAPSHOT_SECTIONS = ("operation", "factor", "items", "totals")


def _canonical_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # 10.00 and 10 are the same amount
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace; amounts, dates, ids and enums as text."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_canonical_default,
    )


def hash_payload(payload: Mapping[str, Any]) -> str:
    """Hex SHA-256 of the canonical JSON of ``payload``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def hash_version_snapshot(snapshot: Mapping[str, Any]) -> str:
    """
    Hash of a version snapshot as stored in ``snapshot_json``.

    Raises:
        ValueError: If one of the snapshot sections is missing.
    """
    missing = [s for s in SNAPSHOT_SECTIONS if s not in snapshot]
    if missing:
        raise ValueError(f"Version snapshot is missing sections: {missing}")
    return hash_payload(snapshot)


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chain link: H(entity_type | entity_id | action | payload_hash | prev_hash)."""
    link = "|".join((
        entity_type,
        str(entity_id),
        action,
        payload_hash,
        prev_hash or GENESIS_HASH,
    ))
    return hashlib.sha256(link.encode("utf-8")).hexdigest()
