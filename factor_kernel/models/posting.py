"""
Module: factor_kernel.models.posting
Responsibility: ORM persistence for idempotency-keyed ledger postings.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - posting_key is unique; existence of a key is the sole guard against
      applying a settlement effect twice.
    - Postings are append-only (ORM listeners).

Key formats:
    discount:<operation_item_id>   receivable transfer of one settled item
    cost:<operation_id>            aggregate factor-cost payable
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from factor_kernel.db.base import TrackedBase, UUIDString


class PostingType(str, Enum):
    """Kinds of ledger effect recorded by a posting."""

    AR_DISCOUNT_SETTLEMENT = "ar_discount_settlement"
    AR_BUYBACK_SETTLEMENT = "ar_buyback_settlement"
    AP_FACTOR_COST = "ap_factor_cost"


class Posting(TrackedBase):
    """
    One applied settlement effect, keyed for idempotency.

    Guarantees:
        - At most one row per posting_key.
        - Never updated or deleted once flushed.
    """

    __tablename__ = "factor_postings"

    __table_args__ = (
        UniqueConstraint("posting_key", name="uq_factor_posting_key"),
        Index("idx_factor_posting_operation", "operation_id"),
        Index("idx_factor_posting_company", "company_id"),
    )

    posting_key: Mapped[str] = mapped_column(String(200), nullable=False)
    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    operation_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    operation_item_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    # PostingType value
    posting_type: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[Decimal]

    ar_title_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    ar_installment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )
    ap_title_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    ap_installment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<Posting {self.posting_key} {self.posting_type} {self.amount}>"
