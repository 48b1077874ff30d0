"""
Receivables ledger: lookups, candidate listings and custody moves.
"""

from datetime import date
from uuid import uuid4

import pytest

from factor_kernel.exceptions import (
    InstallmentNotFoundError,
    InvalidCustodyTransitionError,
)
from factor_modules.receivables.models import CustodyStatus, InstallmentStatus
from factor_modules.receivables.service import ReceivablesLedger, ReceivablesPort


class TestLookup:

    def test_get_by_id(self, receivables, company_id, make_installment):
        installment = make_installment(customer_name="Beta SA")
        found = receivables.get_installment_by_id(company_id, installment.id)
        assert found == installment
        assert found.customer_name == "Beta SA"

    def test_missing(self, receivables, company_id):
        with pytest.raises(InstallmentNotFoundError):
            receivables.get_installment_by_id(company_id, uuid4())

    def test_scoped_to_company(self, receivables, make_installment):
        installment = make_installment()
        with pytest.raises(InstallmentNotFoundError):
            receivables.get_installment_by_id(uuid4(), installment.id)

    def test_satisfies_port(self, receivables):
        assert isinstance(receivables, ReceivablesPort)


class TestListings:

    def test_open_in_own_custody(self, receivables, company_id, make_installment):
        late = make_installment(due_date=date(2026, 4, 1))
        early = make_installment(due_date=date(2026, 3, 1), status=InstallmentStatus.OVERDUE)
        make_installment(status=InstallmentStatus.PAID)
        make_installment(custody_status=CustodyStatus.WITH_FACTOR)
        make_installment(amount="0.00")

        found = receivables.list_open_installments(company_id)
        assert [i.id for i in found] == [early.id, late.id]

    def test_query_matches_document_or_customer(self, receivables, company_id, make_installment):
        by_doc = make_installment(document_number="NF-7781")
        by_customer = make_installment(customer_name="Padaria Central")
        make_installment(customer_name="Other")

        assert [i.id for i in receivables.list_open_installments(company_id, "7781")] == [by_doc.id]
        assert [i.id for i in receivables.list_open_installments(company_id, "padaria")] == [
            by_customer.id
        ]

    def test_limit(self, receivables, company_id, make_installment):
        for _ in range(3):
            make_installment()
        assert len(receivables.list_open_installments(company_id, limit=2)) == 2

    def test_with_factor(self, receivables, company_id, make_installment):
        held = make_installment(custody_status=CustodyStatus.WITH_FACTOR)
        make_installment()
        make_installment(custody_status=CustodyStatus.REPURCHASED)
        assert [i.id for i in receivables.list_installments_with_factor(company_id)] == [held.id]

    def test_custom_open_statuses(self, session, company_id, make_installment):
        make_installment(status=InstallmentStatus.OVERDUE)
        only_open = ReceivablesLedger(session, open_statuses=(InstallmentStatus.OPEN,))
        assert only_open.list_open_installments(company_id) == []


class TestCustody:

    def test_own_to_with_factor(self, receivables, company_id, actor_id, make_installment, deterministic_clock):
        installment = make_installment()
        factor_id, item_id = uuid4(), uuid4()
        updated = receivables.update_installment(
            company_id=company_id,
            installment_id=installment.id,
            actor_id=actor_id,
            custody_status=CustodyStatus.WITH_FACTOR,
            factor_id=factor_id,
            operation_item_id=item_id,
        )
        assert updated.custody_status is CustodyStatus.WITH_FACTOR
        assert updated.factor_id == factor_id
        assert updated.factor_operation_item_id == item_id
        assert updated.factor_assigned_at == deterministic_clock.now()
        assert updated.due_date == installment.due_date

    def test_with_factor_to_repurchased(self, receivables, company_id, actor_id, make_installment):
        installment = make_installment(custody_status=CustodyStatus.WITH_FACTOR)
        updated = receivables.update_installment(
            company_id=company_id,
            installment_id=installment.id,
            actor_id=actor_id,
            custody_status=CustodyStatus.REPURCHASED,
        )
        assert updated.custody_status is CustodyStatus.REPURCHASED
        assert updated.factor_released_at is not None

    @pytest.mark.parametrize("start, target", [
        (CustodyStatus.OWN, CustodyStatus.REPURCHASED),
        (CustodyStatus.WITH_FACTOR, CustodyStatus.WITH_FACTOR),
        (CustodyStatus.REPURCHASED, CustodyStatus.OWN),
    ])
    def test_invalid_moves(self, receivables, company_id, actor_id, make_installment, start, target):
        installment = make_installment(custody_status=start)
        with pytest.raises(InvalidCustodyTransitionError):
            receivables.update_installment(
                company_id=company_id,
                installment_id=installment.id,
                actor_id=actor_id,
                custody_status=target,
            )

    def test_due_date_only(self, receivables, company_id, actor_id, make_installment):
        installment = make_installment()
        updated = receivables.update_installment(
            company_id=company_id,
            installment_id=installment.id,
            actor_id=actor_id,
            due_date=date(2026, 6, 30),
        )
        assert updated.due_date == date(2026, 6, 30)
        assert updated.custody_status is CustodyStatus.OWN
