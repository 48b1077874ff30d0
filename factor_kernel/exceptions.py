"""
Typed Exception Hierarchy for the Factor Operation Engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the factor engine decide whether to retry, fix input, or give up
based on the error they receive.  That decision must never depend on parsing
message text:

  - Every error has a TYPED exception class (catch by type, not message)
  - Every exception has a CODE attribute (machine-readable, API-safe)
  - Exceptions carry structured DATA (operation ids, statuses, keys)

Example - WRONG way to handle errors:
    try:
        service.send_to_factor(operation_id)
    except Exception as e:
        if "empty" in str(e):  # FRAGILE - message might change
            ask_for_items()

Example - RIGHT way (what this module enables):
    try:
        service.send_to_factor(operation_id)
    except EmptyOperationError as e:
        api_response(code=e.code, operation=e.operation_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from FactorEngineError:

    FactorEngineError (base)
    |
    +-- NotFoundError
    |   +-- FactorNotFoundError
    |   +-- OperationNotFoundError
    |   +-- OperationItemNotFoundError
    |   +-- InstallmentNotFoundError
    |   +-- VersionNotFoundError
    |
    +-- ValidationError
    |   +-- UnknownActionTypeError
    |   +-- InstallmentNotEligibleError
    |   +-- InvalidResponseError
    |   +-- ItemNotInOperationError
    |   +-- VersionMismatchError
    |   +-- MissingCounterpartError
    |   +-- InvalidCustodyTransitionError
    |   +-- InvalidStateError
    |       +-- OperationNotEditableError
    |       +-- EmptyOperationError
    |       +-- InvalidTransitionError
    |       +-- MissingResponsesError
    |       +-- InactiveFactorError
    |       +-- SettlementInProgressError
    |       +-- ItemAlreadySettledError
    |
    +-- SettlementError
    |   +-- SettlementIncompleteError  (retryable)
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | FACTOR_NOT_FOUND            | Factor missing or in another company
                | OPERATION_NOT_FOUND         | Operation missing or in another company
                | OPERATION_ITEM_NOT_FOUND    | Item missing from the operation
                | INSTALLMENT_NOT_FOUND       | Receivable installment missing/foreign
                | VERSION_NOT_FOUND           | Version id unknown for the operation
----------------|-----------------------------|-----------------------------------------
Validation      | UNKNOWN_ACTION_TYPE         | action_type not discount/buyback
                | INSTALLMENT_NOT_ELIGIBLE    | Custody/status/amount rules violated
                | INVALID_RESPONSE            | Malformed factor response entry
                | ITEM_NOT_IN_OPERATION       | Response names a foreign item
                | VERSION_MISMATCH            | Response for a stale/future version
                | MISSING_COUNTERPART         | Costs > 0 but factor has no org
                | INVALID_CUSTODY_TRANSITION  | Custody would move backward
----------------|-----------------------------|-----------------------------------------
State           | OPERATION_NOT_EDITABLE      | Item/field change outside draft
                | OPERATION_EMPTY             | Sending an operation with no items
                | INVALID_TRANSITION          | Status change not in the workflow
                | MISSING_RESPONSES           | Concluding before any response
                | FACTOR_INACTIVE             | New operation for an inactive factor
                | SETTLEMENT_IN_PROGRESS      | Cancel after a partial settlement
                | ITEM_ALREADY_SETTLED        | Re-answering an item that has a posting
----------------|-----------------------------|-----------------------------------------
Settlement      | SETTLEMENT_INCOMPLETE       | Ledger/audit step failed mid-way (retry)
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Hash chain validation failed
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a version/posting/audit row

===============================================================================
HANDLING PATTERNS
===============================================================================

1. IDEMPOTENT NO-OPS ARE NOT EXCEPTIONS.  A second ``conclude_operation``
   returns ``ConcludeResult(idempotent=True)``; a lost send race returns
   ``SendResult(idempotent=True)``.  Retries are never penalized.

2. RETRYABLE SETTLEMENT FAILURES:

    try:
        service.conclude_operation(op_id, settlement_date=d)
    except SettlementIncompleteError as e:
        if e.retryable:
            schedule_retry(op_id)   # posting keys prevent double effects

3. STATE ERRORS ARE VALIDATION ERRORS.  ``InvalidStateError`` subclasses
   ``ValidationError`` so API layers can map both to a 4xx response while
   workflows that care can still catch the narrower type.
"""


class FactorEngineError(Exception):
    """
    Base exception for all factor engine errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FACTOR_ENGINE_ERROR"
    retryable: bool = False


# Not-found exceptions


class NotFoundError(FactorEngineError):
    """Base exception for entities missing from the caller's company scope."""

    code: str = "NOT_FOUND"


class FactorNotFoundError(NotFoundError):
    """Factor with given ID was not found in the company."""

    code: str = "FACTOR_NOT_FOUND"

    def __init__(self, factor_id: str):
        self.factor_id = factor_id
        super().__init__(f"Factor not found: {factor_id}")


class OperationNotFoundError(NotFoundError):
    """Factor operation with given ID was not found in the company."""

    code: str = "OPERATION_NOT_FOUND"

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Factor operation not found: {operation_id}")


class OperationItemNotFoundError(NotFoundError):
    """Operation item does not exist inside the given operation."""

    code: str = "OPERATION_ITEM_NOT_FOUND"

    def __init__(self, operation_id: str, item_id: str):
        self.operation_id = operation_id
        self.item_id = item_id
        super().__init__(
            f"Item {item_id} not found in factor operation {operation_id}"
        )


class InstallmentNotFoundError(NotFoundError):
    """Receivable installment was not found in the company."""

    code: str = "INSTALLMENT_NOT_FOUND"

    def __init__(self, installment_id: str):
        self.installment_id = installment_id
        super().__init__(f"Receivable installment not found: {installment_id}")


class VersionNotFoundError(NotFoundError):
    """Version does not belong to the operation."""

    code: str = "VERSION_NOT_FOUND"

    def __init__(self, operation_id: str, version_id: str):
        self.operation_id = operation_id
        self.version_id = version_id
        super().__init__(
            f"Version {version_id} not found for factor operation {operation_id}"
        )


# Validation exceptions


class ValidationError(FactorEngineError):
    """Base exception for malformed input and violated preconditions."""

    code: str = "VALIDATION_ERROR"


class UnknownActionTypeError(ValidationError):
    """Item action type is not one of the supported actions."""

    code: str = "UNKNOWN_ACTION_TYPE"

    def __init__(self, action_type: str, allowed: list[str]):
        self.action_type = action_type
        self.allowed = allowed
        super().__init__(
            f"Unknown action type '{action_type}'; expected one of {allowed}"
        )


class InstallmentNotEligibleError(ValidationError):
    """Installment cannot be offered to the factor with this action."""

    code: str = "INSTALLMENT_NOT_ELIGIBLE"

    def __init__(self, installment_id: str, action_type: str, reason: str):
        self.installment_id = installment_id
        self.action_type = action_type
        self.reason = reason
        super().__init__(
            f"Installment {installment_id} not eligible for {action_type}: {reason}"
        )


class InvalidResponseError(ValidationError):
    """A factor response entry is malformed."""

    code: str = "INVALID_RESPONSE"

    def __init__(self, index: int, reason: str):
        self.index = index
        self.reason = reason
        super().__init__(f"Invalid factor response at position {index}: {reason}")


class ItemNotInOperationError(ValidationError):
    """A factor response references an item outside the operation."""

    code: str = "ITEM_NOT_IN_OPERATION"

    def __init__(self, operation_id: str, item_id: str):
        self.operation_id = operation_id
        self.item_id = item_id
        super().__init__(
            f"Item {item_id} does not belong to factor operation {operation_id}"
        )


class VersionMismatchError(ValidationError):
    """Responses were submitted against a version that is not current."""

    code: str = "VERSION_MISMATCH"

    def __init__(
        self,
        operation_id: str,
        submitted_version_id: str,
        current_version_id: str | None,
    ):
        self.operation_id = operation_id
        self.submitted_version_id = submitted_version_id
        self.current_version_id = current_version_id
        super().__init__(
            f"Responses for version {submitted_version_id} rejected: "
            f"current version of operation {operation_id} is {current_version_id}"
        )


class MissingCounterpartError(ValidationError):
    """Factor costs must be payable but the factor has no counterpart organization."""

    code: str = "MISSING_COUNTERPART"

    def __init__(self, factor_id: str, costs_amount: str):
        self.factor_id = factor_id
        self.costs_amount = costs_amount
        super().__init__(
            f"Factor {factor_id} has no counterpart organization to receive "
            f"the cost payable of {costs_amount}"
        )


class InvalidCustodyTransitionError(ValidationError):
    """Custody status may only move own -> with_factor -> repurchased."""

    code: str = "INVALID_CUSTODY_TRANSITION"

    def __init__(self, installment_id: str, from_status: str, to_status: str):
        self.installment_id = installment_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Installment {installment_id} custody cannot move "
            f"from {from_status} to {to_status}"
        )


# State exceptions


class InvalidStateError(ValidationError):
    """Action attempted from a status that forbids it."""

    code: str = "INVALID_STATE"


class OperationNotEditableError(InvalidStateError):
    """Items and editable fields may only change while the operation is draft."""

    code: str = "OPERATION_NOT_EDITABLE"

    def __init__(self, operation_id: str, status: str, action: str):
        self.operation_id = operation_id
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} on factor operation {operation_id} in status {status}; "
            "only draft operations are editable"
        )


class EmptyOperationError(InvalidStateError):
    """An operation without items cannot be sent."""

    code: str = "OPERATION_EMPTY"

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(
            f"Factor operation {operation_id} is empty; add at least one item "
            "before sending"
        )


class InvalidTransitionError(InvalidStateError):
    """Requested status change is not a transition of the workflow."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: str, from_state: str, action: str):
        self.entity_id = entity_id
        self.from_state = from_state
        self.action = action
        super().__init__(
            f"Action '{action}' is not allowed for {entity_id} in status {from_state}"
        )


class MissingResponsesError(InvalidStateError):
    """An operation cannot be concluded before any factor response."""

    code: str = "MISSING_RESPONSES"

    def __init__(self, operation_id: str, version_id: str | None):
        self.operation_id = operation_id
        self.version_id = version_id
        super().__init__(
            f"Factor operation {operation_id} has no responses recorded "
            f"for version {version_id}"
        )


class InactiveFactorError(InvalidStateError):
    """New operations cannot be opened against an inactive factor."""

    code: str = "FACTOR_INACTIVE"

    def __init__(self, factor_id: str):
        self.factor_id = factor_id
        super().__init__(f"Factor {factor_id} is inactive")


class SettlementInProgressError(InvalidStateError):
    """
    Settlement already produced postings for this operation.

    The operation can no longer be cancelled; finish it with
    ``conclude_operation``.
    """

    code: str = "SETTLEMENT_IN_PROGRESS"

    def __init__(self, operation_id: str, posting_count: int):
        self.operation_id = operation_id
        self.posting_count = posting_count
        super().__init__(
            f"Factor operation {operation_id} already has {posting_count} "
            "settlement posting(s); retry conclude_operation instead of cancelling"
        )


class ItemAlreadySettledError(InvalidStateError):
    """A response may not change an item whose posting already exists."""

    code: str = "ITEM_ALREADY_SETTLED"

    def __init__(self, operation_id: str, item_id: str):
        self.operation_id = operation_id
        self.item_id = item_id
        super().__init__(
            f"Item {item_id} of factor operation {operation_id} is already "
            "settled; its response can no longer change"
        )


# Settlement exceptions


class SettlementError(FactorEngineError):
    """Base exception for settlement failures."""

    code: str = "SETTLEMENT_ERROR"


class SettlementIncompleteError(SettlementError):
    """
    A ledger or audit step failed while concluding an operation.

    Postings already created stay in place.  Calling
    ``conclude_operation`` again completes only the missing effects.
    """

    code: str = "SETTLEMENT_INCOMPLETE"
    retryable: bool = True

    def __init__(self, operation_id: str, step: str, cause: str):
        self.operation_id = operation_id
        self.step = step
        self.cause = cause
        super().__init__(
            f"Settlement of factor operation {operation_id} stopped at {step}: "
            f"{cause}; retry conclude_operation to finish"
        )


# Audit exceptions


class AuditError(FactorEngineError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Immutability exceptions


class ImmutabilityError(FactorEngineError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Versions, postings and audit events are append-only.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
