"""
Factor Domain Models (``factor_modules.factor.models``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of a factor operation:
factors, operations, items, sent versions and factor responses, plus the
result objects returned by ``FactorService``.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Consumed by
``FactorService`` and returned to callers.

Invariants enforced
-------------------
* All models are ``frozen=True`` (immutable after construction).
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``ResponseInput`` is not validated on construction; validation lives in
  ``reconciliation.validate_responses`` so errors can name the offending
  position.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from factor_kernel.db.types import ZERO
from factor_kernel.services.posting_registry import PostingRecord


class OperationStatus(Enum):
    """Operation lifecycle states.  Must align with ``OPERATION_WORKFLOW.states``."""
    DRAFT = "draft"
    SENT_TO_FACTOR = "sent_to_factor"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ActionType(Enum):
    """What the company asks the factor to do with an installment."""
    DISCOUNT = "discount"
    BUYBACK = "buyback"


class ItemStatus(Enum):
    """Per-item outcome after the factor's response."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ADJUSTED = "adjusted"


class ResponseStatus(Enum):
    """Factor's answer for one item of a version."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ADJUSTED = "adjusted"

    @property
    def settles(self) -> bool:
        return self is not ResponseStatus.REJECTED


@dataclass(frozen=True)
class Factor:
    """A financing counterpart and its default cost rates."""
    id: UUID
    company_id: UUID
    name: str
    code: str | None = None
    organization_id: UUID | None = None
    default_interest_rate: Decimal = ZERO
    default_fee_rate: Decimal = ZERO
    default_iof_rate: Decimal = ZERO
    default_other_cost_rate: Decimal = ZERO
    default_grace_days: int = 0
    default_auto_settle_buyback: bool = False
    is_active: bool = True
    notes: str | None = None


@dataclass(frozen=True)
class FactorOperation:
    """A batch of installments offered to one factor."""
    id: UUID
    company_id: UUID
    factor_id: UUID
    operation_number: int
    issue_date: date
    status: OperationStatus = OperationStatus.DRAFT
    reference: str | None = None
    expected_settlement_date: date | None = None
    settlement_account_id: UUID | None = None
    gross_amount: Decimal = ZERO
    costs_amount: Decimal = ZERO
    net_amount: Decimal = ZERO
    version_counter: int = 0
    current_version_id: UUID | None = None
    sent_at: datetime | None = None
    sent_by_id: UUID | None = None
    last_response_at: datetime | None = None
    completed_at: datetime | None = None
    completed_by_id: UUID | None = None
    cancelled_at: datetime | None = None
    cancelled_by_id: UUID | None = None
    cancel_reason: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class OperationItem:
    """One installment inside an operation, with terms frozen at selection."""
    id: UUID
    operation_id: UUID
    line_no: int
    action_type: ActionType
    installment_id: UUID
    title_id: UUID
    installment_number_snapshot: int
    due_date_snapshot: date
    amount_snapshot: Decimal
    status: ItemStatus = ItemStatus.PENDING
    sales_document_id: UUID | None = None
    customer_id: UUID | None = None
    document_number_snapshot: str | None = None
    customer_name_snapshot: str | None = None
    proposed_due_date: date | None = None
    buyback_settle_now: bool = False
    final_amount: Decimal | None = None
    final_due_date: date | None = None
    notes: str | None = None


@dataclass(frozen=True)
class OperationVersion:
    """Immutable package sent to the factor."""
    id: UUID
    operation_id: UUID
    version_number: int
    source_status: str
    total_items: int
    gross_amount: Decimal
    costs_amount: Decimal
    net_amount: Decimal
    snapshot_json: dict[str, Any]
    snapshot_hash: str
    csv_artifact_id: str | None = None
    zip_artifact_id: str | None = None
    report_artifact_id: str | None = None
    sent_at: datetime | None = None
    sent_by_id: UUID | None = None


@dataclass(frozen=True)
class OperationResponse:
    """Factor's recorded answer for one item of one version."""
    id: UUID
    version_id: UUID
    operation_item_id: UUID
    response_status: ResponseStatus
    response_code: str | None = None
    response_message: str | None = None
    accepted_amount: Decimal | None = None
    adjusted_amount: Decimal | None = None
    adjusted_due_date: date | None = None
    fee_amount: Decimal = ZERO
    interest_amount: Decimal = ZERO
    iof_amount: Decimal = ZERO
    other_cost_amount: Decimal = ZERO
    total_cost_amount: Decimal = ZERO
    imported_at: datetime | None = None
    processed_by_id: UUID | None = None


@dataclass(frozen=True)
class ResponseInput:
    """One entry of a factor's response file, as submitted by the caller."""
    operation_item_id: UUID
    response_status: ResponseStatus | str
    response_code: str | None = None
    response_message: str | None = None
    accepted_amount: Decimal | None = None
    adjusted_amount: Decimal | None = None
    adjusted_due_date: date | None = None
    fee_amount: Decimal = ZERO
    interest_amount: Decimal = ZERO
    iof_amount: Decimal = ZERO
    other_cost_amount: Decimal = ZERO

    @property
    def total_cost_amount(self) -> Decimal:
        return (
            self.fee_amount + self.interest_amount
            + self.iof_amount + self.other_cost_amount
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ResponseInput":
        """Build from a plain mapping (e.g. a parsed response file row)."""

        def _dec(key: str, default: Decimal | None) -> Decimal | None:
            value = data.get(key)
            return default if value is None else Decimal(str(value))

        due = data.get("adjusted_due_date")
        if isinstance(due, str):
            due = date.fromisoformat(due)
        item_id = data["operation_item_id"]
        return cls(
            operation_item_id=item_id if isinstance(item_id, UUID) else UUID(str(item_id)),
            response_status=data["response_status"],
            response_code=data.get("response_code"),
            response_message=data.get("response_message"),
            accepted_amount=_dec("accepted_amount", None),
            adjusted_amount=_dec("adjusted_amount", None),
            adjusted_due_date=due,
            fee_amount=_dec("fee_amount", ZERO),
            interest_amount=_dec("interest_amount", ZERO),
            iof_amount=_dec("iof_amount", ZERO),
            other_cost_amount=_dec("other_cost_amount", ZERO),
        )


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class SendResult:
    """Outcome of ``send_to_factor``."""
    operation: FactorOperation
    version: OperationVersion | None
    idempotent: bool = False


@dataclass(frozen=True)
class ApplyResponsesResult:
    """Outcome of ``apply_responses``."""
    operation: FactorOperation
    responses: tuple[OperationResponse, ...]
    items: tuple[OperationItem, ...]


@dataclass(frozen=True)
class ConcludeResult:
    """Outcome of ``conclude_operation``."""
    operation: FactorOperation
    postings: tuple[PostingRecord, ...] = ()
    created_posting_keys: tuple[str, ...] = ()
    idempotent: bool = False


@dataclass(frozen=True)
class PostingPreview:
    """Amounts settlement would post from the current responses."""
    discount_amount: Decimal = ZERO
    buyback_amount: Decimal = ZERO
    factor_costs_amount: Decimal = ZERO


@dataclass(frozen=True)
class OperationDetail:
    """Everything a reviewer needs about one operation."""
    operation: FactorOperation
    factor: Factor
    items: tuple[OperationItem, ...] = ()
    versions: tuple[OperationVersion, ...] = ()
    responses: tuple[OperationResponse, ...] = ()
    postings: tuple[PostingRecord, ...] = ()
    posting_preview: PostingPreview = field(default_factory=PostingPreview)
