"""
Response reconciliation (``factor_modules.factor.reconciliation``).

Responsibility
--------------
Pure rules applied when the factor answers a version:

* ``validate_responses`` checks a submitted batch before anything is
  written and normalizes the status of every entry.
* ``resolve_item_outcome`` derives an item's final amount and due date from
  its response, falling back to the proposal and then the snapshot.
* ``recompute_totals`` and ``build_posting_preview`` aggregate the recorded
  responses.

Architecture position
---------------------
**Modules layer** -- pure functions, ZERO I/O.  Called by
``FactorService.apply_responses``, ``get_operation_detail`` and the
``SettlementEngine``.

Invariants enforced
-------------------
* gross = sum(final_amount) over accepted and adjusted items.
* costs = sum(fee + interest + iof + other) over every response of the
  current version, rejected ones included.
* net = gross - costs (not floored; a negative net is reported as is).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Sequence
from uuid import UUID

from factor_kernel.db.types import ZERO, round_money
from factor_kernel.exceptions import InvalidResponseError, ItemNotInOperationError
from factor_modules.factor.costs import OperationTotals
from factor_modules.factor.models import (
    ActionType,
    ItemStatus,
    OperationItem,
    OperationResponse,
    PostingPreview,
    ResponseInput,
    ResponseStatus,
)

_AMOUNT_FIELDS = (
    "accepted_amount",
    "adjusted_amount",
    "fee_amount",
    "interest_amount",
    "iof_amount",
    "other_cost_amount",
)


@dataclass(frozen=True)
class ItemOutcome:
    """Final terms of one item after the factor's response."""
    status: ItemStatus
    final_amount: Decimal | None
    final_due_date: date | None


def _coerce_status(value: ResponseStatus | str, index: int) -> ResponseStatus:
    if isinstance(value, ResponseStatus):
        return value
    try:
        return ResponseStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in ResponseStatus)
        raise InvalidResponseError(
            index, f"status '{value}' is not one of {allowed}"
        ) from None


def validate_responses(
    operation_id: UUID,
    responses: Sequence[ResponseInput],
    item_ids: Iterable[UUID],
) -> list[ResponseInput]:
    """
    Validate a response batch and return it with normalized statuses.

    Raises:
        InvalidResponseError: Empty batch, unknown status, negative amount,
            or an ``adjusted`` entry with neither amount nor due date.
        ItemNotInOperationError: An entry names an item of another operation.
    """
    if not responses:
        raise InvalidResponseError(0, "at least one response is required")

    known = set(item_ids)
    normalized: list[ResponseInput] = []
    for index, response in enumerate(responses):
        status = _coerce_status(response.response_status, index)

        if response.operation_item_id not in known:
            raise ItemNotInOperationError(
                str(operation_id), str(response.operation_item_id)
            )

        for name in _AMOUNT_FIELDS:
            value = getattr(response, name)
            if value is not None and (not value.is_finite() or value < 0):
                raise InvalidResponseError(index, f"{name} must be non-negative")

        if (
            status is ResponseStatus.ADJUSTED
            and response.adjusted_amount is None
            and response.adjusted_due_date is None
        ):
            raise InvalidResponseError(
                index, "adjusted responses need adjusted_amount or adjusted_due_date"
            )

        normalized.append(replace(response, response_status=status))
    return normalized


def resolve_item_outcome(
    item: OperationItem,
    response: ResponseInput | OperationResponse,
) -> ItemOutcome:
    """Final amount and due date of ``item`` given the factor's answer."""
    status = ResponseStatus(
        response.response_status.value
        if isinstance(response.response_status, ResponseStatus)
        else response.response_status
    )
    proposed_or_snapshot = item.proposed_due_date or item.due_date_snapshot

    if status is ResponseStatus.REJECTED:
        return ItemOutcome(ItemStatus.REJECTED, None, None)

    if status is ResponseStatus.ACCEPTED:
        amount = response.accepted_amount
        return ItemOutcome(
            ItemStatus.ACCEPTED,
            amount if amount is not None else item.amount_snapshot,
            proposed_or_snapshot,
        )

    if response.adjusted_amount is not None:
        amount = response.adjusted_amount
    elif response.accepted_amount is not None:
        amount = response.accepted_amount
    else:
        amount = item.amount_snapshot
    return ItemOutcome(
        ItemStatus.ADJUSTED,
        amount,
        response.adjusted_due_date or proposed_or_snapshot,
    )


def recompute_totals(
    items: Iterable[OperationItem],
    responses: Iterable[OperationResponse],
) -> OperationTotals:
    """Operation totals from settled items and the current version's responses."""
    gross = ZERO
    for item in items:
        if item.status in (ItemStatus.ACCEPTED, ItemStatus.ADJUSTED):
            gross += item.final_amount or ZERO
    costs = ZERO
    for response in responses:
        costs += response.total_cost_amount
    return OperationTotals(
        gross_amount=round_money(gross),
        costs_amount=round_money(costs),
        net_amount=round_money(gross - costs),
    )


def settled_responses(
    responses: Iterable[OperationResponse],
) -> list[OperationResponse]:
    """Responses whose item moves ledgers (accepted or adjusted)."""
    return [r for r in responses if r.response_status.settles]


def settlement_amount(item: OperationItem, response: OperationResponse) -> Decimal:
    """Amount posted for a settled item."""
    if item.final_amount is not None:
        return item.final_amount
    return resolve_item_outcome(item, response).final_amount or ZERO


def build_posting_preview(
    items: Mapping[UUID, OperationItem],
    responses: Iterable[OperationResponse],
) -> PostingPreview:
    """What settlement would post from the recorded responses."""
    discount = buyback = costs = ZERO
    for response in settled_responses(responses):
        item = items.get(response.operation_item_id)
        if item is None:
            continue
        amount = settlement_amount(item, response)
        if item.action_type is ActionType.DISCOUNT:
            discount += amount
        else:
            buyback += amount
        costs += response.total_cost_amount
    return PostingPreview(
        discount_amount=round_money(discount),
        buyback_amount=round_money(buyback),
        factor_costs_amount=round_money(costs),
    )
