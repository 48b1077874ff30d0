"""
Settlement: ledger effects, cost title, preconditions and retry after failure.
"""

from datetime import date
from decimal import Decimal

import pytest

from factor_kernel.exceptions import (
    InvalidTransitionError,
    ItemAlreadySettledError,
    MissingCounterpartError,
    MissingResponsesError,
    SettlementIncompleteError,
    SettlementInProgressError,
)
from factor_kernel.models.posting import PostingType
from factor_kernel.utils.idempotency import cost_posting_key, item_posting_key
from factor_modules.factor.models import ItemStatus, OperationStatus, ResponseInput
from factor_modules.factor.service import FactorService
from factor_modules.receivables.models import CustodyStatus


class FlakyReceivables:
    """Delegates to a real ledger; the n-th custody update fails once."""

    def __init__(self, ledger, fail_on_call: int):
        self._ledger = ledger
        self._fail_on_call = fail_on_call
        self.calls = 0

    def __getattr__(self, name):
        return getattr(self._ledger, name)

    def update_installment(self, **kwargs):
        self.calls += 1
        if self.calls == self._fail_on_call:
            raise RuntimeError("receivables unavailable")
        return self._ledger.update_installment(**kwargs)


def _posting_keys(postings):
    return {p.posting_key for p in postings}


# =============================================================================
# Ledger effects
# =============================================================================


class TestDiscountSettlement:

    def test_custody_moves_to_factor(self, factor_service, receivables, company_id, completed_operation, factor):
        item = factor_service.get_operation_detail(completed_operation.operation.id).items[0]
        installment = receivables.get_installment_by_id(company_id, item.installment_id)
        assert installment.custody_status is CustodyStatus.WITH_FACTOR
        assert installment.factor_id == factor.id
        assert installment.factor_operation_item_id == item.id
        assert installment.factor_assigned_at is not None

    def test_completed_with_postings(self, factor_service, completed_operation, actor_id):
        operation = completed_operation.operation
        item = factor_service.get_operation_detail(operation.id).items[0]

        assert operation.status is OperationStatus.COMPLETED
        assert operation.completed_by_id == actor_id
        assert operation.completed_at is not None
        assert completed_operation.idempotent is False
        assert _posting_keys(completed_operation.postings) == {
            item_posting_key(item.id), cost_posting_key(operation.id),
        }
        assert set(completed_operation.created_posting_keys) == {
            item_posting_key(item.id), cost_posting_key(operation.id),
        }

    def test_discount_posting_fields(self, factor_service, completed_operation):
        item = factor_service.get_operation_detail(completed_operation.operation.id).items[0]
        posting = next(
            p for p in completed_operation.postings
            if p.posting_key == item_posting_key(item.id)
        )
        assert posting.posting_type == PostingType.AR_DISCOUNT_SETTLEMENT.value
        assert posting.amount == Decimal("1000.00")
        assert posting.operation_item_id == item.id
        assert posting.ar_installment_id == item.installment_id
        assert posting.ar_title_id == item.title_id

    def test_adjusted_due_date_applied(self, factor_service, receivables, company_id, sent_operation):
        item = factor_service.get_operation_detail(sent_operation.operation.id).items[0]
        factor_service.apply_responses(sent_operation.operation.id, sent_operation.version.id, [
            ResponseInput(item.id, "adjusted", adjusted_due_date=date(2026, 5, 4)),
        ])
        factor_service.conclude_operation(sent_operation.operation.id)

        installment = receivables.get_installment_by_id(company_id, item.installment_id)
        assert installment.due_date == date(2026, 5, 4)

    def test_adjusted_amount_posted(self, factor_service, sent_operation):
        item = factor_service.get_operation_detail(sent_operation.operation.id).items[0]
        factor_service.apply_responses(sent_operation.operation.id, sent_operation.version.id, [
            ResponseInput(item.id, "adjusted", adjusted_amount=Decimal("870.00")),
        ])
        result = factor_service.conclude_operation(sent_operation.operation.id)
        posting = next(
            p for p in result.postings if p.posting_key == item_posting_key(item.id)
        )
        assert posting.amount == Decimal("870.00")

    def test_rejected_items_not_posted(self, factor_service, receivables, company_id, sent_operation):
        item = factor_service.get_operation_detail(sent_operation.operation.id).items[0]
        factor_service.apply_responses(sent_operation.operation.id, sent_operation.version.id, [
            ResponseInput(item.id, "rejected", fee_amount=Decimal("5.00")),
        ])
        result = factor_service.conclude_operation(sent_operation.operation.id)

        assert result.operation.status is OperationStatus.COMPLETED
        assert _posting_keys(result.postings) == {cost_posting_key(sent_operation.operation.id)}
        installment = receivables.get_installment_by_id(company_id, item.installment_id)
        assert installment.custody_status is CustodyStatus.OWN


class TestBuybackSettlement:

    def test_custody_repurchased(self, factor_service, receivables, company_id, factor, draft_operation, make_installment, accept_all):
        held = make_installment(
            amount="400.00", custody_status=CustodyStatus.WITH_FACTOR, factor_id=factor.id,
        )
        item = factor_service.add_operation_item(
            draft_operation.id, "buyback", held.id, buyback_settle_now=True,
        )
        sent = factor_service.send_to_factor(draft_operation.id)
        accept_all(sent)
        result = factor_service.conclude_operation(draft_operation.id)

        installment = receivables.get_installment_by_id(company_id, held.id)
        assert installment.custody_status is CustodyStatus.REPURCHASED
        assert installment.factor_released_at is not None

        posting = next(
            p for p in result.postings if p.posting_key == item_posting_key(item.id)
        )
        assert posting.posting_type == PostingType.AR_BUYBACK_SETTLEMENT.value
        assert posting.amount == Decimal("400.00")
        assert posting.details["buyback_settle_now"] is True


# =============================================================================
# Factor costs
# =============================================================================


class TestCostPosting:

    def test_payable_title_for_costs(self, factor_service, payables, factor, sent_operation, accept_all):
        accept_all(sent_operation, fee_amount="20", interest_amount="10", iof_amount="4")
        result = factor_service.conclude_operation(
            sent_operation.operation.id, settlement_date=date(2026, 2, 20),
        )

        cost = next(
            p for p in result.postings
            if p.posting_key == cost_posting_key(sent_operation.operation.id)
        )
        assert cost.posting_type == PostingType.AP_FACTOR_COST.value
        assert cost.amount == Decimal("34.00")

        (title,) = payables.list_titles_for_origin("factor_operation", sent_operation.operation.id)
        assert title.id == cost.ap_title_id
        assert title.document_number == "FACTOR-1"
        assert title.organization_id == factor.organization_id
        assert title.issue_date == date(2026, 2, 20)
        assert title.amount_total == Decimal("34.00")

        (installment,) = payables.list_installments(title.id)
        assert installment.id == cost.ap_installment_id
        assert installment.installment_number == 1
        assert installment.due_date == date(2026, 2, 20)
        assert installment.amount_original == Decimal("34.00")

    def test_zero_costs_no_title(self, factor_service, payables, completed_operation):
        operation_id = completed_operation.operation.id
        cost = next(
            p for p in completed_operation.postings
            if p.posting_key == cost_posting_key(operation_id)
        )
        assert cost.amount == Decimal("0")
        assert cost.ap_title_id is None
        assert payables.list_titles_for_origin("factor_operation", operation_id) == []

    def test_rejected_costs_not_charged(self, factor_service, payables, sent_operation):
        item = factor_service.get_operation_detail(sent_operation.operation.id).items[0]
        factor_service.apply_responses(sent_operation.operation.id, sent_operation.version.id, [
            ResponseInput(item.id, "rejected", fee_amount=Decimal("5.00")),
        ])
        factor_service.conclude_operation(sent_operation.operation.id)
        assert payables.list_titles_for_origin(
            "factor_operation", sent_operation.operation.id,
        ) == []

    def test_settlement_date_defaults_to_issue_date(self, factor_service, payables, sent_operation, accept_all):
        accept_all(sent_operation, fee_amount="1")
        factor_service.conclude_operation(sent_operation.operation.id)
        (title,) = payables.list_titles_for_origin("factor_operation", sent_operation.operation.id)
        assert title.issue_date == date(2026, 2, 19)

    def test_costs_without_counterpart(self, factor_service, make_factor, make_installment, receivables, company_id):
        orphan = make_factor("F-Orphan", organization_id=None)
        operation = factor_service.create_operation(orphan.id)
        installment = make_installment()
        item = factor_service.add_operation_item(operation.id, "discount", installment.id)
        sent = factor_service.send_to_factor(operation.id)
        factor_service.apply_responses(operation.id, sent.version.id, [
            ResponseInput(item.id, "accepted", fee_amount=Decimal("3.00")),
        ])

        with pytest.raises(MissingCounterpartError):
            factor_service.conclude_operation(operation.id)

        detail = factor_service.get_operation_detail(operation.id)
        assert detail.operation.status is OperationStatus.SENT_TO_FACTOR
        assert detail.postings == ()
        assert receivables.get_installment_by_id(
            company_id, installment.id,
        ).custody_status is CustodyStatus.OWN

    def test_no_costs_without_counterpart_is_fine(self, factor_service, make_factor, make_installment, accept_all):
        orphan = make_factor("F-Orphan", organization_id=None)
        operation = factor_service.create_operation(orphan.id)
        factor_service.add_operation_item(operation.id, "discount", make_installment().id)
        sent = factor_service.send_to_factor(operation.id)
        accept_all(sent)
        assert factor_service.conclude_operation(operation.id).operation.status is (
            OperationStatus.COMPLETED
        )


# =============================================================================
# Preconditions
# =============================================================================


class TestConcludePreconditions:

    def test_without_responses(self, factor_service, sent_operation):
        with pytest.raises(MissingResponsesError):
            factor_service.conclude_operation(sent_operation.operation.id)

    def test_draft(self, factor_service, draft_operation, make_installment):
        factor_service.add_operation_item(draft_operation.id, "discount", make_installment().id)
        with pytest.raises(InvalidTransitionError):
            factor_service.conclude_operation(draft_operation.id)

    def test_cancelled(self, factor_service, sent_operation, accept_all):
        accept_all(sent_operation)
        factor_service.cancel_operation(sent_operation.operation.id, "withdrawn")
        with pytest.raises(InvalidTransitionError):
            factor_service.conclude_operation(sent_operation.operation.id)

    def test_conclude_notes(self, factor_service, sent_operation, accept_all):
        accept_all(sent_operation)
        result = factor_service.conclude_operation(
            sent_operation.operation.id, notes="settled by phone",
        )
        assert result.operation.notes == "settled by phone"


# =============================================================================
# Idempotency and retry
# =============================================================================


class TestIdempotency:

    def test_second_conclude(self, factor_service, completed_operation):
        again = factor_service.conclude_operation(completed_operation.operation.id)
        assert again.idempotent is True
        assert again.created_posting_keys == ()
        assert _posting_keys(again.postings) == _posting_keys(completed_operation.postings)

    def test_logged(self, factor_service, sent_operation, accept_all, captured_logs):
        accept_all(sent_operation)
        factor_service.conclude_operation(sent_operation.operation.id)
        messages = [r["message"] for r in captured_logs()]
        assert "factor_settlement_applied" in messages
        assert "factor_operation_completed" in messages


class TestRetryAfterFailure:

    @pytest.fixture
    def flaky_setup(self, session, company_id, actor_id, deterministic_clock, receivables, factor, make_installment):
        flaky = FlakyReceivables(receivables, fail_on_call=2)
        service = FactorService(
            session, company_id=company_id, actor_id=actor_id,
            clock=deterministic_clock, receivables=flaky,
        )
        operation = service.create_operation(factor.id)
        first = service.add_operation_item(operation.id, "discount", make_installment().id)
        second = service.add_operation_item(operation.id, "discount", make_installment().id)
        sent = service.send_to_factor(operation.id)
        service.apply_responses(operation.id, sent.version.id, [
            ResponseInput(first.id, "accepted", fee_amount=Decimal("2.00")),
            ResponseInput(second.id, "accepted", fee_amount=Decimal("3.00")),
        ])
        return service, operation, first, second

    def test_failure_is_retryable(self, flaky_setup):
        service, operation, _, _ = flaky_setup
        with pytest.raises(SettlementIncompleteError) as exc_info:
            service.conclude_operation(operation.id)
        assert exc_info.value.retryable is True
        assert exc_info.value.step == "items"
        assert exc_info.value.code == "SETTLEMENT_INCOMPLETE"

    def test_partial_progress_kept(self, flaky_setup):
        service, operation, first, _ = flaky_setup
        with pytest.raises(SettlementIncompleteError):
            service.conclude_operation(operation.id)

        detail = service.get_operation_detail(operation.id)
        assert detail.operation.status is OperationStatus.SENT_TO_FACTOR
        assert _posting_keys(detail.postings) == {item_posting_key(first.id)}

    def test_retry_applies_only_missing(self, flaky_setup, receivables, company_id, payables):
        service, operation, first, second = flaky_setup
        with pytest.raises(SettlementIncompleteError):
            service.conclude_operation(operation.id)

        result = service.conclude_operation(operation.id)
        assert result.operation.status is OperationStatus.COMPLETED
        assert set(result.created_posting_keys) == {
            item_posting_key(second.id), cost_posting_key(operation.id),
        }
        assert _posting_keys(result.postings) == {
            item_posting_key(first.id),
            item_posting_key(second.id),
            cost_posting_key(operation.id),
        }
        for item in (first, second):
            assert receivables.get_installment_by_id(
                company_id, item.installment_id,
            ).custody_status is CustodyStatus.WITH_FACTOR
        (title,) = payables.list_titles_for_origin("factor_operation", operation.id)
        assert title.amount_total == Decimal("5.00")

    def test_cancel_refused_after_partial_settlement(self, flaky_setup):
        service, operation, first, _ = flaky_setup
        with pytest.raises(SettlementIncompleteError):
            service.conclude_operation(operation.id)

        with pytest.raises(SettlementInProgressError) as exc_info:
            service.cancel_operation(operation.id, "factor gave up")
        assert exc_info.value.code == "SETTLEMENT_IN_PROGRESS"
        assert exc_info.value.posting_count == 1

        detail = service.get_operation_detail(operation.id)
        assert detail.operation.status is OperationStatus.SENT_TO_FACTOR
        assert detail.operation.cancel_reason is None
        assert _posting_keys(detail.postings) == {item_posting_key(first.id)}

        result = service.conclude_operation(operation.id)
        assert result.operation.status is OperationStatus.COMPLETED

    def test_settled_item_response_is_frozen(self, flaky_setup, receivables, company_id):
        service, operation, first, second = flaky_setup
        with pytest.raises(SettlementIncompleteError):
            service.conclude_operation(operation.id)
        version_id = service.get_operation_detail(operation.id).operation.current_version_id

        with pytest.raises(ItemAlreadySettledError) as exc_info:
            service.apply_responses(operation.id, version_id, [
                ResponseInput(first.id, "rejected"),
                ResponseInput(second.id, "rejected"),
            ])
        assert exc_info.value.item_id == str(first.id)

        items = {i.id: i for i in service.get_operation_detail(operation.id).items}
        assert items[first.id].status is ItemStatus.ACCEPTED
        assert items[second.id].status is ItemStatus.ACCEPTED
        assert receivables.get_installment_by_id(
            company_id, first.installment_id,
        ).custody_status is CustodyStatus.WITH_FACTOR

        service.apply_responses(operation.id, version_id, [
            ResponseInput(second.id, "rejected"),
        ])
        items = {i.id: i for i in service.get_operation_detail(operation.id).items}
        assert items[second.id].status is ItemStatus.REJECTED
