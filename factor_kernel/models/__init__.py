"""ORM models owned by the factor kernel."""

from factor_kernel.models.audit_event import AuditAction, AuditEntityType, AuditEvent
from factor_kernel.models.posting import Posting, PostingType

__all__ = [
    "AuditAction",
    "AuditEntityType",
    "AuditEvent",
    "Posting",
    "PostingType",
]
