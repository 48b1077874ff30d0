"""
Settlement & Posting Engine (``factor_modules.factor.settlement``).

Responsibility
--------------
Applies the accepted outcome of a factor operation to the receivables and
payables ledgers exactly once:

1. For every item whose response is accepted or adjusted, one
   ``discount:<itemId>`` posting plus its custody effect.
2. Exactly one ``cost:<operationId>`` posting, carrying a payable title and
   installment when the factor's costs are positive.
3. The ``factor_operation_completed`` audit entry.

Architecture position
---------------------
**Modules layer** -- stateful engine sharing the caller's session.  Called
by ``FactorService.conclude_operation``, which performs the final status
compare-and-swap and owns the last commit.

Invariants enforced
-------------------
* The posting key is checked before an effect runs, and the effect and its
  posting are flushed inside one savepoint.  A key that already exists
  skips the effect.  An item's posting is inserted before its custody
  move, so a concurrent settler of the same item waits on the unique key
  and then skips instead of re-validating custody that already moved.
* After each unit the ``checkpoint`` callback runs (the service passes
  ``session.commit``) so that completed units survive a later failure.
* Each checkpoint commit also releases the caller's ``FOR UPDATE`` lock on
  the operation row.  From the first unit on, a concurrent concluder is
  kept out only by the posting-key check and the unique ``posting_key``
  constraint; whichever caller loses the final status compare-and-swap
  returns the completed operation as an idempotent result.
* Once any posting exists the operation can no longer be cancelled and
  settled items no longer accept a new response.
* A positive cost total requires the factor's counterpart organization.
  This is checked before any effect.

Failure modes
-------------
* MissingCounterpartError -- raised up front, nothing written.
* SettlementIncompleteError (retryable) -- any failure while applying
  effects or writing the audit entry.  Units already checkpointed stay in
  place and a retry applies only the missing ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Mapping, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from factor_kernel.db.types import ZERO, round_money
from factor_kernel.exceptions import MissingCounterpartError, SettlementIncompleteError
from factor_kernel.logging_config import get_logger
from factor_kernel.models.audit_event import AuditAction, AuditEntityType
from factor_kernel.models.posting import PostingType
from factor_kernel.services.auditor_service import AuditorService
from factor_kernel.services.posting_registry import PostingRecord, PostingRegistry
from factor_kernel.utils.idempotency import cost_posting_key, item_posting_key
from factor_modules.factor.config import FactorConfig
from factor_modules.factor.models import (
    ActionType,
    Factor,
    FactorOperation,
    OperationItem,
    OperationResponse,
    ResponseStatus,
)
from factor_modules.factor.reconciliation import settled_responses, settlement_amount
from factor_modules.payables.service import PayablesPort
from factor_modules.receivables.models import CustodyStatus
from factor_modules.receivables.service import ReceivablesPort

logger = get_logger("modules.factor.settlement")

COST_ORIGIN_TYPE = "factor_operation"


@dataclass(frozen=True)
class SettlementOutcome:
    """Postings of the operation after settlement and the keys created now."""
    postings: tuple[PostingRecord, ...]
    created_posting_keys: tuple[str, ...]


class SettlementEngine:
    """Idempotent application of a concluded operation to both ledgers."""

    def __init__(
        self,
        session: Session,
        receivables: ReceivablesPort,
        payables: PayablesPort,
        postings: PostingRegistry,
        auditor: AuditorService,
        config: FactorConfig,
        checkpoint: Callable[[], None] | None = None,
    ):
        self._session = session
        self._receivables = receivables
        self._payables = payables
        self._postings = postings
        self._auditor = auditor
        self._config = config
        self._checkpoint = checkpoint or (lambda: None)

    def settle(
        self,
        operation: FactorOperation,
        factor: Factor,
        items: Mapping[UUID, OperationItem],
        responses: Sequence[OperationResponse],
        settlement_date: date,
        actor_id: UUID,
    ) -> SettlementOutcome:
        settled = [r for r in settled_responses(responses) if r.operation_item_id in items]
        costs_total = round_money(
            sum((r.total_cost_amount for r in settled), ZERO)
        )

        if costs_total > 0 and factor.organization_id is None:
            raise MissingCounterpartError(str(factor.id), str(costs_total))

        logger.info("factor_settlement_started", extra={
            "operation_id": str(operation.id),
            "settled_items": len(settled),
            "costs_amount": str(costs_total),
            "settlement_date": settlement_date.isoformat(),
        })

        created: list[str] = []
        step = "items"
        try:
            for response in sorted(settled, key=lambda r: items[r.operation_item_id].line_no):
                item = items[response.operation_item_id]
                if self._settle_item(operation, factor, item, response, actor_id):
                    created.append(item_posting_key(item.id))
                self._checkpoint()

            step = "costs"
            if self._settle_costs(operation, factor, costs_total, settlement_date, actor_id):
                created.append(cost_posting_key(operation.id))
            self._checkpoint()

            step = "audit"
            self._auditor.insert_audit_log(
                entity_type=AuditEntityType.OPERATION,
                entity_id=operation.id,
                action=AuditAction.OPERATION_COMPLETED,
                actor_id=actor_id,
                company_id=operation.company_id,
                payload={
                    "operation_number": operation.operation_number,
                    "settlement_date": settlement_date.isoformat(),
                    "settled_items": len(settled),
                    "costs_amount": str(costs_total),
                    "created_posting_keys": list(created),
                },
            )
        except Exception as exc:
            logger.error("factor_settlement_incomplete", extra={
                "operation_id": str(operation.id),
                "step": step,
                "created_posting_keys": created,
            }, exc_info=True)
            raise SettlementIncompleteError(str(operation.id), step, str(exc)) from exc

        postings = tuple(self._postings.list_for_operation(operation.id))
        logger.info("factor_settlement_applied", extra={
            "operation_id": str(operation.id),
            "posting_count": len(postings),
            "created_posting_keys": created,
        })
        return SettlementOutcome(postings=postings, created_posting_keys=tuple(created))

    # =========================================================================
    # Units
    # =========================================================================

    def _settle_item(
        self,
        operation: FactorOperation,
        factor: Factor,
        item: OperationItem,
        response: OperationResponse,
        actor_id: UUID,
    ) -> bool:
        key = item_posting_key(item.id)
        if self._postings.exists(key):
            logger.info("factor_settlement_item_skipped", extra={
                "operation_id": str(operation.id),
                "posting_key": key,
            })
            return False

        adjusted = response.response_status is ResponseStatus.ADJUSTED
        new_due_date = item.final_due_date if adjusted else None
        amount = settlement_amount(item, response)

        if item.action_type is ActionType.DISCOUNT:
            custody = CustodyStatus.WITH_FACTOR
            posting_type = PostingType.AR_DISCOUNT_SETTLEMENT
        else:
            custody = CustodyStatus.REPURCHASED
            posting_type = PostingType.AR_BUYBACK_SETTLEMENT

        savepoint = self._session.begin_nested()
        try:
            outcome = self._postings.create_posting(
                posting_key=key,
                company_id=operation.company_id,
                operation_id=operation.id,
                posting_type=posting_type,
                amount=amount,
                actor_id=actor_id,
                operation_item_id=item.id,
                ar_title_id=item.title_id,
                ar_installment_id=item.installment_id,
                details={
                    "action_type": item.action_type.value,
                    "response_status": response.response_status.value,
                    "line_no": item.line_no,
                    "final_due_date": (
                        item.final_due_date.isoformat() if item.final_due_date else None
                    ),
                    "buyback_settle_now": item.buyback_settle_now,
                },
            )
            if not outcome.created:
                savepoint.rollback()
                return False
            self._receivables.update_installment(
                company_id=operation.company_id,
                installment_id=item.installment_id,
                actor_id=actor_id,
                custody_status=custody,
                due_date=new_due_date,
                factor_id=factor.id,
                operation_item_id=item.id,
            )
            savepoint.commit()
        except Exception:
            if savepoint.is_active:
                savepoint.rollback()
            raise
        return True

    def _settle_costs(
        self,
        operation: FactorOperation,
        factor: Factor,
        costs_total: Decimal,
        settlement_date: date,
        actor_id: UUID,
    ) -> bool:
        key = cost_posting_key(operation.id)
        if self._postings.exists(key):
            return False

        savepoint = self._session.begin_nested()
        try:
            ap_title_id = ap_installment_id = None
            if costs_total > 0:
                title = self._payables.create_ap_title(
                    company_id=operation.company_id,
                    organization_id=factor.organization_id,
                    amount_total=costs_total,
                    issue_date=settlement_date,
                    document_number=self._config.cost_document_number(
                        operation.operation_number
                    ),
                    actor_id=actor_id,
                    description=self._config.cost_description(
                        operation.operation_number
                    ),
                    origin_type=COST_ORIGIN_TYPE,
                    origin_id=operation.id,
                )
                installment = self._payables.create_ap_installment(
                    title_id=title.id,
                    installment_number=1,
                    due_date=settlement_date,
                    amount=costs_total,
                    actor_id=actor_id,
                )
                ap_title_id, ap_installment_id = title.id, installment.id

            outcome = self._postings.create_posting(
                posting_key=key,
                company_id=operation.company_id,
                operation_id=operation.id,
                posting_type=PostingType.AP_FACTOR_COST,
                amount=costs_total,
                actor_id=actor_id,
                ap_title_id=ap_title_id,
                ap_installment_id=ap_installment_id,
                details={
                    "factor_id": str(factor.id),
                    "settlement_date": settlement_date.isoformat(),
                },
            )
            if not outcome.created:
                savepoint.rollback()
                return False
            savepoint.commit()
        except Exception:
            if savepoint.is_active:
                savepoint.rollback()
            raise
        return True
