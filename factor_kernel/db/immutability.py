"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Three record kinds of the factor engine are append-only:

Entity                      | When Immutable        | Why
----------------------------|-----------------------|----------------------------------
FactorOperationVersion      | ALWAYS (from creation)| The package the factor received
Posting                     | ALWAYS (from creation)| Sole guard against double effects
AuditEvent                  | ALWAYS (from creation)| Audit trail is sacred

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
The listeners below intercept them and raise ImmutabilityViolationError, so
the transaction is aborted and the database is never modified:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Changes to ``updated_at`` / ``updated_by_id`` alone are metadata and pass.

===============================================================================
USAGE
===============================================================================

    from factor_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY - never in production):

    from factor_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from factor_kernel.exceptions import ImmutabilityViolationError
from factor_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit metadata that may change on otherwise-immutable rows
_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _has_content_changes(target) -> bool:
    state = inspect(target)
    for attr in state.attrs:
        if attr.key in _METADATA_FIELDS:
            continue
        if attr.history.has_changes():
            return True
    return False


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


# =============================================================================
# AuditEvent
# =============================================================================


def _check_audit_event_immutability(mapper, connection, target):
    """Prevent any updates to AuditEvent records."""
    if not _has_content_changes(target):
        return
    _block(
        "AuditEvent",
        target,
        "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    """Prevent deletion of AuditEvent records."""
    _block("AuditEvent", target, "DELETE", "Audit events cannot be deleted")


# =============================================================================
# Posting
# =============================================================================


def _check_posting_immutability(mapper, connection, target):
    """Prevent any updates to Posting records."""
    if not _has_content_changes(target):
        return
    _block(
        "Posting",
        target,
        "UPDATE",
        f"Posting {target.posting_key} is append-only",
    )


def _check_posting_delete(mapper, connection, target):
    """Prevent deletion of Posting records."""
    _block(
        "Posting",
        target,
        "DELETE",
        f"Posting {target.posting_key} cannot be deleted",
    )


# =============================================================================
# FactorOperationVersion
# =============================================================================


def _check_version_immutability(mapper, connection, target):
    """Prevent any updates to sent versions."""
    if not _has_content_changes(target):
        return
    _block(
        "FactorOperationVersion",
        target,
        "UPDATE",
        f"Version {target.version_number} was sent to the factor and is frozen",
    )


def _check_version_delete(mapper, connection, target):
    """Prevent deletion of sent versions."""
    _block(
        "FactorOperationVersion",
        target,
        "DELETE",
        f"Version {target.version_number} cannot be deleted",
    )


def _listener_table():
    # Inline imports: models import from db, db would otherwise import models
    from factor_kernel.models.audit_event import AuditEvent
    from factor_kernel.models.posting import Posting
    from factor_modules.factor.orm import FactorOperationVersionModel

    return (
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (Posting, "before_update", _check_posting_immutability),
        (Posting, "before_delete", _check_posting_delete),
        (FactorOperationVersionModel, "before_update", _check_version_immutability),
        (FactorOperationVersionModel, "before_delete", _check_version_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Registering twice is harmless.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Safely remove an event listener, ignoring if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)
