"""
Factor Module Configuration Schema.

Defines the structure and sensible defaults for factor operation settings.
Override at instantiation with company-specific values:

    config = FactorConfig(
        installment_list_limit=500,
        cost_document_prefix="FCT",
    )
"""

from dataclasses import dataclass, field
from decimal import Decimal

from factor_kernel.logging_config import get_logger
from factor_modules.receivables.models import InstallmentStatus

logger = get_logger("modules.factor.config")


@dataclass
class FactorConfig:
    """Configuration schema for the factor module."""

    # Eligible/with-factor listings
    installment_list_limit: int = 300
    operation_list_limit: int = 100

    # Payable registered for the factor's costs: "<prefix>-<operation_number>"
    cost_document_prefix: str = "FACTOR"
    cost_description_template: str = "Custos operação factor #{operation_number}"

    # Cancel reason length bounds (inclusive)
    cancel_reason_min_length: int = 3
    cancel_reason_max_length: int = 500

    # Factor defaults bounds
    max_rate_percent: Decimal = Decimal("100")
    max_grace_days: int = 365

    eligible_installment_statuses: tuple[InstallmentStatus, ...] = field(
        default=(
            InstallmentStatus.OPEN,
            InstallmentStatus.PARTIAL,
            InstallmentStatus.OVERDUE,
        )
    )

    def __post_init__(self):
        if self.installment_list_limit <= 0:
            raise ValueError("installment_list_limit must be positive")
        if self.operation_list_limit <= 0:
            raise ValueError("operation_list_limit must be positive")
        if not self.cost_document_prefix or not self.cost_document_prefix.strip():
            raise ValueError("cost_document_prefix cannot be empty")
        if self.cancel_reason_min_length < 0:
            raise ValueError("cancel_reason_min_length cannot be negative")
        if self.cancel_reason_max_length < self.cancel_reason_min_length:
            raise ValueError(
                "cancel_reason_max_length must be >= cancel_reason_min_length"
            )
        if self.max_rate_percent <= 0:
            raise ValueError("max_rate_percent must be positive")
        if self.max_grace_days < 0:
            raise ValueError("max_grace_days cannot be negative")
        if not self.eligible_installment_statuses:
            raise ValueError("eligible_installment_statuses cannot be empty")
        logger.debug(
            "factor_config_initialized",
            extra={
                "installment_list_limit": self.installment_list_limit,
                "cost_document_prefix": self.cost_document_prefix,
                "eligible_installment_statuses": [
                    s.value for s in self.eligible_installment_statuses
                ],
            },
        )

    def cost_document_number(self, operation_number: int) -> str:
        return f"{self.cost_document_prefix}-{operation_number}"

    def cost_description(self, operation_number: int) -> str:
        return self.cost_description_template.format(
            operation_number=operation_number
        )
