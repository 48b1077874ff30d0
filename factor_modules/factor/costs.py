"""
Factor cost estimation (``factor_modules.factor.costs``).

Pure functions, ZERO I/O.  Used to price discount items when a version is
frozen and to build the posting preview of an operation.

Rules
-----
* days_to_maturity = ceil(days between issue and due); 0 when not positive.
* billable_days = max(0, days_to_maturity - grace_days).
* interest = base * interest_rate% * billable_days / 30.
* fee, iof, other = base * rate%.
* net = max(0, base - total).
* Every amount is rounded half-up to 2 places.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from factor_kernel.db.types import ZERO, round_money

_HUNDRED = Decimal("100")
_THIRTY = Decimal("30")
_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class FactorRates:
    """Percent rates (0-100) and grace period used to price a discount."""
    interest_rate: Decimal = ZERO
    fee_rate: Decimal = ZERO
    iof_rate: Decimal = ZERO
    other_cost_rate: Decimal = ZERO
    grace_days: int = 0

    def __post_init__(self):
        for name in ("interest_rate", "fee_rate", "iof_rate", "other_cost_rate"):
            _require_non_negative(getattr(self, name), name)
        if self.grace_days < 0:
            raise ValueError("Invalid grace_days: expected non-negative value")


@dataclass(frozen=True)
class DiscountCostBreakdown:
    """Estimated cost of discounting one installment."""
    days_to_maturity: int
    billable_days: int
    interest_amount: Decimal
    fee_amount: Decimal
    iof_amount: Decimal
    other_cost_amount: Decimal
    total_cost_amount: Decimal
    net_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "days_to_maturity": self.days_to_maturity,
            "billable_days": self.billable_days,
            "interest_amount": str(self.interest_amount),
            "fee_amount": str(self.fee_amount),
            "iof_amount": str(self.iof_amount),
            "other_cost_amount": str(self.other_cost_amount),
            "total_cost_amount": str(self.total_cost_amount),
            "net_amount": str(self.net_amount),
        }


@dataclass(frozen=True)
class OperationTotals:
    """Gross, costs and net of an operation."""
    gross_amount: Decimal
    costs_amount: Decimal
    net_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "gross_amount": str(self.gross_amount),
            "costs_amount": str(self.costs_amount),
            "net_amount": str(self.net_amount),
        }


def _require_non_negative(value: Decimal, name: str) -> None:
    if value is None or not value.is_finite() or value < 0:
        raise ValueError(f"Invalid {name}: expected non-negative finite number")


def days_to_maturity(issue_date: date, due_date: date) -> int:
    """Whole days from issue to due, rounded up; 0 when due is not later."""
    if isinstance(issue_date, datetime) or isinstance(due_date, datetime):
        issue = issue_date if isinstance(issue_date, datetime) else datetime(
            issue_date.year, issue_date.month, issue_date.day
        )
        due = due_date if isinstance(due_date, datetime) else datetime(
            due_date.year, due_date.month, due_date.day
        )
        seconds = (due - issue).total_seconds()
        if seconds <= 0:
            return 0
        return -(-int(seconds) // _SECONDS_PER_DAY)
    days = (due_date - issue_date).days
    return days if days > 0 else 0


def calculate_discount_costs(
    base_amount: Decimal,
    issue_date: date,
    due_date: date,
    rates: FactorRates,
) -> DiscountCostBreakdown:
    """
    Estimate the factor's costs for discounting ``base_amount``.

    Raises:
        ValueError: On a negative base amount.
    """
    _require_non_negative(base_amount, "base_amount")

    days = days_to_maturity(issue_date, due_date)
    billable = max(0, days - rates.grace_days)

    interest = round_money(
        base_amount * (rates.interest_rate / _HUNDRED) * (Decimal(billable) / _THIRTY)
    )
    fee = round_money(base_amount * (rates.fee_rate / _HUNDRED))
    iof = round_money(base_amount * (rates.iof_rate / _HUNDRED))
    other = round_money(base_amount * (rates.other_cost_rate / _HUNDRED))
    total = round_money(interest + fee + iof + other)
    net = round_money(max(ZERO, base_amount - total))

    return DiscountCostBreakdown(
        days_to_maturity=days,
        billable_days=billable,
        interest_amount=interest,
        fee_amount=fee,
        iof_amount=iof,
        other_cost_amount=other,
        total_cost_amount=total,
        net_amount=net,
    )


def aggregate_operation_totals(
    gross_amount: Decimal,
    interest_amount: Decimal = ZERO,
    fee_amount: Decimal = ZERO,
    iof_amount: Decimal = ZERO,
    other_cost_amount: Decimal = ZERO,
) -> OperationTotals:
    """
    Combine per-item estimates into operation totals (net floored at 0).

    Raises:
        ValueError: On any negative input.
    """
    _require_non_negative(gross_amount, "gross_amount")
    _require_non_negative(interest_amount, "interest_amount")
    _require_non_negative(fee_amount, "fee_amount")
    _require_non_negative(iof_amount, "iof_amount")
    _require_non_negative(other_cost_amount, "other_cost_amount")

    costs = round_money(interest_amount + fee_amount + iof_amount + other_cost_amount)
    return OperationTotals(
        gross_amount=round_money(gross_amount),
        costs_amount=costs,
        net_amount=round_money(max(ZERO, gross_amount - costs)),
    )
