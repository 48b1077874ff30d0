"""
Receivables Domain Models (``factor_modules.receivables.models``).

Responsibility
--------------
Frozen dataclass value objects for the receivable installments a factor
operation can sell or buy back, plus their status and custody enums.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Monetary fields use ``Decimal``.
* Custody only advances own -> with_factor -> repurchased
  (``CustodyStatus.can_move_to``).
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class InstallmentStatus(Enum):
    """Collection status of a receivable installment."""
    OPEN = "open"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    PAID = "paid"
    CANCELLED = "cancelled"


class CustodyStatus(Enum):
    """Who holds the right to collect the installment."""
    OWN = "own"
    WITH_FACTOR = "with_factor"
    REPURCHASED = "repurchased"

    def can_move_to(self, target: "CustodyStatus") -> bool:
        return (self, target) in _CUSTODY_MOVES


_CUSTODY_MOVES = frozenset({
    (CustodyStatus.OWN, CustodyStatus.WITH_FACTOR),
    (CustodyStatus.WITH_FACTOR, CustodyStatus.REPURCHASED),
})


@dataclass(frozen=True)
class ReceivableInstallment:
    """One installment of a customer receivable title."""
    id: UUID
    company_id: UUID
    title_id: UUID
    installment_number: int
    due_date: date
    amount_open: Decimal
    status: InstallmentStatus = InstallmentStatus.OPEN
    custody_status: CustodyStatus = CustodyStatus.OWN
    document_number: str | None = None
    customer_id: UUID | None = None
    customer_name: str | None = None
    sales_document_id: UUID | None = None
    factor_id: UUID | None = None
    factor_operation_item_id: UUID | None = None
    factor_assigned_at: datetime | None = None
    factor_released_at: datetime | None = None
