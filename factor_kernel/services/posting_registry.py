"""
PostingRegistry -- atomic insert-if-absent for idempotency-keyed postings.

Responsibility:
    Records that a settlement effect has been applied.  A posting key is
    created at most once; callers apply the effect only when
    ``create_posting`` reports ``created=True``.

Architecture position:
    Kernel > Services.  Used by the factor SettlementEngine.

Invariants enforced:
    - Existence check plus unique constraint.  An IntegrityError inside the
      savepoint means another caller inserted the same key first; the
      existing row is returned with ``created=False``.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from factor_kernel.logging_config import get_logger
from factor_kernel.models.posting import Posting, PostingType

logger = get_logger("services.posting_registry")


@dataclass(frozen=True)
class PostingRecord:
    """Read-only view of a Posting row."""

    id: UUID
    posting_key: str
    company_id: UUID
    operation_id: UUID
    posting_type: str
    amount: Decimal
    operation_item_id: UUID | None = None
    ar_title_id: UUID | None = None
    ar_installment_id: UUID | None = None
    ap_title_id: UUID | None = None
    ap_installment_id: UUID | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, posting: Posting) -> "PostingRecord":
        return cls(
            id=posting.id,
            posting_key=posting.posting_key,
            company_id=posting.company_id,
            operation_id=posting.operation_id,
            posting_type=posting.posting_type,
            amount=posting.amount,
            operation_item_id=posting.operation_item_id,
            ar_title_id=posting.ar_title_id,
            ar_installment_id=posting.ar_installment_id,
            ap_title_id=posting.ap_title_id,
            ap_installment_id=posting.ap_installment_id,
            details=dict(posting.details or {}),
        )


@dataclass(frozen=True)
class PostingOutcome:
    """Result of an insert-if-absent attempt."""

    posting: PostingRecord
    created: bool


class PostingRegistry:
    """Insert-if-absent store of applied settlement effects."""

    def __init__(self, session: Session):
        self._session = session

    def get_posting(self, posting_key: str) -> PostingRecord | None:
        posting = self._find(posting_key)
        return PostingRecord.from_model(posting) if posting else None

    def exists(self, posting_key: str) -> bool:
        return self._find(posting_key) is not None

    def _find(self, posting_key: str) -> Posting | None:
        return self._session.execute(
            select(Posting).where(Posting.posting_key == posting_key)
        ).scalar_one_or_none()

    def create_posting(
        self,
        posting_key: str,
        company_id: UUID,
        operation_id: UUID,
        posting_type: PostingType | str,
        amount: Decimal,
        actor_id: UUID,
        operation_item_id: UUID | None = None,
        ar_title_id: UUID | None = None,
        ar_installment_id: UUID | None = None,
        ap_title_id: UUID | None = None,
        ap_installment_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> PostingOutcome:
        """
        Create the posting unless its key already exists.

        Postconditions:
            - Exactly one row with ``posting_key`` exists afterwards.
            - ``created`` is True only for the caller that inserted it.
        """
        existing = self._find(posting_key)
        if existing is not None:
            logger.info(
                "factor_posting_exists",
                extra={"posting_key": posting_key},
            )
            return PostingOutcome(PostingRecord.from_model(existing), created=False)

        type_value = (
            posting_type.value if isinstance(posting_type, PostingType) else posting_type
        )
        posting = Posting(
            posting_key=posting_key,
            company_id=company_id,
            operation_id=operation_id,
            operation_item_id=operation_item_id,
            posting_type=type_value,
            amount=amount,
            ar_title_id=ar_title_id,
            ar_installment_id=ar_installment_id,
            ap_title_id=ap_title_id,
            ap_installment_id=ap_installment_id,
            details=details or {},
            created_by_id=actor_id,
        )

        savepoint = self._session.begin_nested()
        try:
            self._session.add(posting)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            winner = self._find(posting_key)
            if winner is None:
                raise
            logger.info(
                "factor_posting_race_lost",
                extra={"posting_key": posting_key},
            )
            return PostingOutcome(PostingRecord.from_model(winner), created=False)

        logger.info(
            "factor_posting_created",
            extra={
                "posting_key": posting_key,
                "posting_type": type_value,
                "operation_id": str(operation_id),
                "amount": str(amount),
            },
        )
        return PostingOutcome(PostingRecord.from_model(posting), created=True)

    def list_for_operation(self, operation_id: UUID) -> list[PostingRecord]:
        """Postings of an operation in creation order."""
        postings = self._session.execute(
            select(Posting)
            .where(Posting.operation_id == operation_id)
            .order_by(Posting.created_at, Posting.posting_key)
        ).scalars().all()
        return [PostingRecord.from_model(p) for p in postings]
