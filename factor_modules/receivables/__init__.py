"""
Receivables Module.

Customer receivable installments and their factor custody.
"""

from factor_modules.receivables.models import (
    CustodyStatus,
    InstallmentStatus,
    ReceivableInstallment,
)
from factor_modules.receivables.service import ReceivablesLedger, ReceivablesPort

__all__ = [
    "CustodyStatus",
    "InstallmentStatus",
    "ReceivableInstallment",
    "ReceivablesLedger",
    "ReceivablesPort",
]
