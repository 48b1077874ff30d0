"""
Module: factor_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Audit relevance:
    AuditEvent IS the audit trail.  Every mutating factor operation --
    factor registration, operation creation, item changes, version
    creation, send, response import, completion, cancellation -- produces
    one AuditEvent.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from factor_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions.

    Contract: Every member represents one class of factor event that is
    recorded in the audit chain.
    """

    # Factor registry
    FACTOR_CREATED = "factor_created"
    FACTOR_UPDATED = "factor_updated"
    FACTOR_DEACTIVATED = "factor_deactivated"

    # Operation lifecycle
    OPERATION_CREATED = "factor_operation_created"
    OPERATION_UPDATED = "factor_operation_updated"
    OPERATION_SENT = "factor_operation_sent"
    OPERATION_COMPLETED = "factor_operation_completed"
    OPERATION_CANCELLED = "factor_operation_cancelled"

    # Items, versions, responses
    ITEM_ADDED = "factor_item_added"
    ITEM_REMOVED = "factor_item_removed"
    VERSION_CREATED = "factor_version_created"
    RESPONSE_APPLIED = "factor_response_applied"


class AuditEntityType:
    """Entity type names used in audit events."""

    FACTOR = "factors"
    OPERATION = "factor_operations"
    OPERATION_ITEM = "factor_operation_items"
    OPERATION_VERSION = "factor_operation_versions"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_company", "company_id"),
        Index("idx_audit_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
    )

    company_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    # e.g. "factors", "factor_operations"
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    # AuditAction value
    action: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    actor_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    payload: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    payload_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    # Null only for the first event
    prev_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        """True iff this is the first event in the hash chain."""
        return self.prev_hash is None
