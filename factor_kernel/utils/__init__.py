"""Utility modules for the factor kernel."""

from factor_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
    hash_version_snapshot,
)
from factor_kernel.utils.idempotency import (
    cost_posting_key,
    generate_posting_key,
    item_posting_key,
)

__all__ = [
    "canonicalize_json",
    "hash_audit_event",
    "hash_payload",
    "hash_version_snapshot",
    "cost_posting_key",
    "generate_posting_key",
    "item_posting_key",
]
