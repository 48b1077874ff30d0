"""
Property-based tests for the factor engine.

Properties checked:
- Cost estimation: total is the sum of its components, net is floored at
  zero, every amount has two decimal places, grace never raises interest.
- Response totals: gross over settled items, costs over every response,
  net = gross - costs.
- Line numbering: max + 1 on add, no renumbering on delete.
- Operation numbers: consecutive per company; every send creates version 1.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from factor_modules.factor.costs import (
    FactorRates,
    aggregate_operation_totals,
    calculate_discount_costs,
)
from factor_modules.factor.models import (
    ActionType,
    ItemStatus,
    OperationItem,
    OperationResponse,
    ResponseStatus,
)
from factor_modules.factor.reconciliation import recompute_totals

ISSUE = date(2026, 2, 19)

amounts = st.decimals(
    min_value=Decimal("0.00"),
    max_value=Decimal("9999999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
rates = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("100"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)


@st.composite
def factor_rates(draw):
    return FactorRates(
        interest_rate=draw(rates),
        fee_rate=draw(rates),
        iof_rate=draw(rates),
        other_cost_rate=draw(rates),
        grace_days=draw(st.integers(min_value=0, max_value=365)),
    )


@st.composite
def settled_item_with_response(draw):
    status = draw(st.sampled_from(list(ResponseStatus)))
    final = None if status is ResponseStatus.REJECTED else draw(amounts)
    item = OperationItem(
        id=uuid4(),
        operation_id=uuid4(),
        line_no=1,
        action_type=ActionType.DISCOUNT,
        installment_id=uuid4(),
        title_id=uuid4(),
        installment_number_snapshot=1,
        due_date_snapshot=ISSUE,
        amount_snapshot=final or Decimal("0.00"),
        status=ItemStatus(status.value),
        final_amount=final,
    )
    fee, interest = draw(amounts), draw(amounts)
    response = OperationResponse(
        id=uuid4(),
        version_id=uuid4(),
        operation_item_id=item.id,
        response_status=status,
        fee_amount=fee,
        interest_amount=interest,
        total_cost_amount=fee + interest,
    )
    return item, response


# =============================================================================
# Pure arithmetic
# =============================================================================


class TestCostProperties:

    @given(base=amounts, days=st.integers(min_value=-30, max_value=720), rates=factor_rates())
    @settings(max_examples=300)
    def test_breakdown_is_consistent(self, base, days, rates):
        cost = calculate_discount_costs(base, ISSUE, ISSUE + timedelta(days=days), rates)

        assert cost.total_cost_amount == (
            cost.interest_amount + cost.fee_amount + cost.iof_amount + cost.other_cost_amount
        )
        assert cost.net_amount == max(Decimal("0.00"), base - cost.total_cost_amount)
        assert cost.net_amount >= 0
        assert cost.days_to_maturity == max(0, days)
        assert 0 <= cost.billable_days <= cost.days_to_maturity
        for value in (
            cost.interest_amount, cost.fee_amount, cost.iof_amount,
            cost.other_cost_amount, cost.total_cost_amount, cost.net_amount,
        ):
            assert value.as_tuple().exponent == -2

    @given(
        base=amounts,
        days=st.integers(min_value=0, max_value=365),
        rate=rates,
        grace=st.integers(min_value=0, max_value=365),
    )
    @settings(max_examples=200)
    def test_grace_never_increases_interest(self, base, days, rate, grace):
        due = ISSUE + timedelta(days=days)
        without = calculate_discount_costs(base, ISSUE, due, FactorRates(interest_rate=rate))
        with_grace = calculate_discount_costs(
            base, ISSUE, due, FactorRates(interest_rate=rate, grace_days=grace),
        )
        assert with_grace.interest_amount <= without.interest_amount

    @given(gross=amounts, parts=st.lists(amounts, min_size=4, max_size=4))
    @settings(max_examples=200)
    def test_aggregate_totals(self, gross, parts):
        totals = aggregate_operation_totals(gross, *parts)
        assert totals.costs_amount == sum(parts, Decimal("0"))
        assert totals.net_amount == max(Decimal("0.00"), gross - totals.costs_amount)


class TestResponseTotalsProperties:

    @given(pairs=st.lists(settled_item_with_response(), min_size=1, max_size=20))
    @settings(max_examples=200)
    def test_totals_follow_outcomes(self, pairs):
        items = [item for item, _ in pairs]
        responses = [response for _, response in pairs]
        totals = recompute_totals(items, responses)

        expected_gross = sum(
            (i.final_amount for i in items if i.status is not ItemStatus.REJECTED),
            Decimal("0"),
        )
        expected_costs = sum((r.total_cost_amount for r in responses), Decimal("0"))
        assert totals.gross_amount == expected_gross
        assert totals.costs_amount == expected_costs
        assert totals.net_amount == totals.gross_amount - totals.costs_amount


# =============================================================================
# Persistence
# =============================================================================


class TestNumberingProperties:

    @given(steps=st.lists(
        st.one_of(st.just("add"), st.integers(min_value=0, max_value=9)),
        min_size=1,
        max_size=12,
    ))
    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_line_numbers(self, steps, factor_service, factor, make_installment):
        """Adds take max + 1; deletes leave the other lines untouched."""
        operation = factor_service.create_operation(factor.id)
        expected: dict = {}

        for step in steps:
            if step == "add":
                item = factor_service.add_operation_item(
                    operation.id, "discount", make_installment().id,
                )
                assert item.line_no == max(expected.values(), default=0) + 1
                expected[item.id] = item.line_no
            elif expected:
                victim = sorted(expected)[step % len(expected)]
                factor_service.delete_operation_item(operation.id, victim)
                del expected[victim]

            items = factor_service.get_operation_detail(operation.id).items
            assert {i.id: i.line_no for i in items} == expected
            assert len({i.line_no for i in items}) == len(items)

    @given(count=st.integers(min_value=1, max_value=5))
    @settings(
        max_examples=15,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_operation_numbers_and_first_version(self, count, factor_service, factor, make_installment):
        numbers = []
        for _ in range(count):
            operation = factor_service.create_operation(factor.id)
            numbers.append(operation.operation_number)
            factor_service.add_operation_item(operation.id, "discount", make_installment().id)
            assert factor_service.send_to_factor(operation.id).version.version_number == 1

        assert numbers == list(range(numbers[0], numbers[0] + count))
