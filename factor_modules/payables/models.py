"""
Payables Domain Models (``factor_modules.payables.models``).

Responsibility
--------------
Frozen value objects for the payable titles and installments the factor
engine registers to pay a factor's costs.

Invariants enforced
-------------------
* All dataclasses are ``frozen=True``.
* ``PayableTitle.__post_init__`` enforces ``amount_open == amount_total -
  amount_paid``; installments enforce the same over their own amounts.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PayableStatus(Enum):
    """Payment status shared by titles and installments."""
    OPEN = "open"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PayableTitle:
    """An amount owed to a counterpart organization."""
    id: UUID
    company_id: UUID
    organization_id: UUID
    document_number: str
    issue_date: date
    amount_total: Decimal
    amount_paid: Decimal = Decimal("0")
    amount_open: Decimal | None = None
    description: str | None = None
    status: PayableStatus = PayableStatus.OPEN
    origin_type: str | None = None
    origin_id: UUID | None = None

    def __post_init__(self):
        if self.amount_total < 0:
            raise ValueError("amount_total cannot be negative")
        expected_open = self.amount_total - self.amount_paid
        if self.amount_open is None:
            object.__setattr__(self, "amount_open", expected_open)
        elif self.amount_open != expected_open:
            raise ValueError(
                f"amount_open {self.amount_open} != amount_total - amount_paid "
                f"({expected_open})"
            )


@dataclass(frozen=True)
class PayableInstallment:
    """One due date of a payable title."""
    id: UUID
    title_id: UUID
    installment_number: int
    due_date: date
    amount_original: Decimal
    amount_paid: Decimal = Decimal("0")
    amount_open: Decimal | None = None
    status: PayableStatus = PayableStatus.OPEN

    def __post_init__(self):
        if self.installment_number < 1:
            raise ValueError("installment_number starts at 1")
        expected_open = self.amount_original - self.amount_paid
        if self.amount_open is None:
            object.__setattr__(self, "amount_open", expected_open)
        elif self.amount_open != expected_open:
            raise ValueError(
                f"amount_open {self.amount_open} != amount_original - amount_paid "
                f"({expected_open})"
            )
