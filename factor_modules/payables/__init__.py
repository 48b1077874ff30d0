"""
Payables Module.

Payable titles and installments owed to counterpart organizations.
"""

from factor_modules.payables.models import (
    PayableInstallment,
    PayableStatus,
    PayableTitle,
)
from factor_modules.payables.service import PayablesLedger, PayablesPort

__all__ = [
    "PayableInstallment",
    "PayableStatus",
    "PayableTitle",
    "PayablesLedger",
    "PayablesPort",
]
