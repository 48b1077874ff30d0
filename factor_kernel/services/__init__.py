"""Services for the factor kernel (write side)."""

from factor_kernel.services.auditor_service import AuditorService, AuditTrace
from factor_kernel.services.posting_registry import (
    PostingOutcome,
    PostingRecord,
    PostingRegistry,
)
from factor_kernel.services.sequence_service import SequenceService
from factor_kernel.services.state_transition import (
    StatusTransitionGuard,
    TransitionOutcome,
)

__all__ = [
    "AuditTrace",
    "AuditorService",
    "PostingOutcome",
    "PostingRecord",
    "PostingRegistry",
    "SequenceService",
    "StatusTransitionGuard",
    "TransitionOutcome",
]
