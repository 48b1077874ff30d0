"""
Posting key generation utilities.

Posting keys ensure that the same settlement effect is applied at most once,
even under retries and concurrent conclusion attempts.  The key is stored on
the Posting row and has a unique constraint.
"""

from uuid import UUID

DISCOUNT_PREFIX = "discount"
COST_PREFIX = "cost"


def generate_posting_key(prefix: str, entity_id: UUID | str) -> str:
    """
    Generate a posting key.

    Format: prefix:entity_id

    Example:
        >>> generate_posting_key("cost", uuid)
        "cost:550e8400-e29b-41d4-a716-446655440000"
    """
    if not prefix or ":" in prefix:
        raise ValueError(f"Invalid posting key prefix: {prefix!r}")
    return f"{prefix}:{entity_id}"


def item_posting_key(item_id: UUID | str) -> str:
    """Key of the receivable-transfer posting for one settled item."""
    return generate_posting_key(DISCOUNT_PREFIX, item_id)


def cost_posting_key(operation_id: UUID | str) -> str:
    """Key of the single aggregate cost posting of an operation."""
    return generate_posting_key(COST_PREFIX, operation_id)


def parse_posting_key(key: str) -> tuple[str, str]:
    """
    Parse a posting key into (prefix, entity_id).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Invalid posting key format: {key}")
    return parts[0], parts[1]
