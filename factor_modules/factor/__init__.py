"""
Factor Module.

Sells batches of receivable installments to a factor: registry, operation
lifecycle, sent versions, response reconciliation and settlement.
"""

from factor_modules.factor.config import FactorConfig
from factor_modules.factor.models import (
    ActionType,
    ApplyResponsesResult,
    ConcludeResult,
    Factor,
    FactorOperation,
    ItemStatus,
    OperationDetail,
    OperationItem,
    OperationResponse,
    OperationStatus,
    OperationVersion,
    PostingPreview,
    ResponseInput,
    ResponseStatus,
    SendResult,
)
from factor_modules.factor.packager import (
    PathTransmissionPackager,
    TransmissionArtifacts,
    TransmissionPackager,
)
from factor_modules.factor.service import FactorService
from factor_modules.factor.workflows import OPERATION_WORKFLOW

__all__ = [
    "ActionType",
    "ApplyResponsesResult",
    "ConcludeResult",
    "Factor",
    "FactorConfig",
    "FactorOperation",
    "FactorService",
    "ItemStatus",
    "OPERATION_WORKFLOW",
    "OperationDetail",
    "OperationItem",
    "OperationResponse",
    "OperationStatus",
    "OperationVersion",
    "PathTransmissionPackager",
    "PostingPreview",
    "ResponseInput",
    "ResponseStatus",
    "SendResult",
    "TransmissionArtifacts",
    "TransmissionPackager",
]
