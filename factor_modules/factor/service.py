"""
Factor Operation Service - Orchestrates factor operations via ledgers + kernel.

Thin glue layer that:
1. Keeps the factor registry (counterparts and their default rates)
2. Drives the operation lifecycle through OPERATION_WORKFLOW and the
   kernel's compare-and-swap StatusTransitionGuard
3. Freezes sent versions through the packager
4. Reconciles the factor's responses
5. Hands concluded operations to the SettlementEngine

All pricing lives in ``costs``, all response rules in ``reconciliation``,
all ledger effects in ``settlement``.  Every mutation writes one audit
event.  This service owns the transaction boundary: it commits on success
and rolls back on failure.

Usage:
    service = FactorService(session, company_id=company_id, actor_id=actor_id)
    factor = service.create_factor(name="F-A", default_fee_rate=Decimal("2"))
    operation = service.create_operation(factor.id, issue_date=date(2026, 2, 19))
    service.add_operation_item(operation.id, "discount", installment_id)
    sent = service.send_to_factor(operation.id)
    service.apply_responses(operation.id, sent.version.id, responses)
    result = service.conclude_operation(operation.id)
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from factor_kernel.db.types import ZERO, round_money
from factor_kernel.domain.clock import Clock, SystemClock
from factor_kernel.exceptions import (
    EmptyOperationError,
    FactorNotFoundError,
    InactiveFactorError,
    InstallmentNotEligibleError,
    InvalidTransitionError,
    ItemAlreadySettledError,
    MissingResponsesError,
    OperationItemNotFoundError,
    OperationNotEditableError,
    OperationNotFoundError,
    SettlementInProgressError,
    UnknownActionTypeError,
    ValidationError,
    VersionMismatchError,
    VersionNotFoundError,
)
from factor_kernel.logging_config import LogContext, get_logger
from factor_kernel.models.audit_event import AuditAction, AuditEntityType
from factor_kernel.services.auditor_service import AuditorService
from factor_kernel.services.posting_registry import PostingRegistry
from factor_kernel.services.sequence_service import SequenceService
from factor_kernel.services.state_transition import StatusTransitionGuard
from factor_kernel.utils.idempotency import item_posting_key
from factor_modules.factor.config import FactorConfig
from factor_modules.factor.models import (
    ActionType,
    ApplyResponsesResult,
    ConcludeResult,
    Factor,
    FactorOperation,
    OperationDetail,
    OperationItem,
    OperationStatus,
    ResponseInput,
    SendResult,
)
from factor_modules.factor.orm import (
    FactorModel,
    FactorOperationItemModel,
    FactorOperationModel,
    FactorOperationResponseModel,
    FactorOperationVersionModel,
)
from factor_modules.factor.packager import (
    PathTransmissionPackager,
    TransmissionPackager,
    build_version_snapshot,
)
from factor_modules.factor.reconciliation import (
    build_posting_preview,
    recompute_totals,
    resolve_item_outcome,
    validate_responses,
)
from factor_modules.factor.settlement import SettlementEngine
from factor_modules.factor.workflows import CANCEL, CONCLUDE, OPERATION_WORKFLOW, SEND
from factor_modules.payables.service import PayablesLedger, PayablesPort
from factor_modules.receivables.models import CustodyStatus, ReceivableInstallment
from factor_modules.receivables.service import ReceivablesLedger, ReceivablesPort

logger = get_logger("modules.factor.service")

_RATE_FIELDS = (
    "default_interest_rate",
    "default_fee_rate",
    "default_iof_rate",
    "default_other_cost_rate",
)


class FactorService:
    """
    Orchestrates factor operations for one company and one actor.

    Collaborators:
    - ReceivablesLedger / PayablesLedger: ledger effects (replaceable through
      the ``ReceivablesPort`` / ``PayablesPort`` protocols)
    - TransmissionPackager: artifact identifiers of sent versions
    - AuditorService, SequenceService, PostingRegistry,
      StatusTransitionGuard: kernel services sharing the session

    Transaction boundary: this service commits on success, rolls back on
    failure.  ``conclude_operation`` additionally commits after every
    settlement unit so that a retry only applies what is missing.
    """

    def __init__(
        self,
        session: Session,
        company_id: UUID,
        actor_id: UUID,
        clock: Clock | None = None,
        receivables: ReceivablesPort | None = None,
        payables: PayablesPort | None = None,
        packager: TransmissionPackager | None = None,
        config: FactorConfig | None = None,
    ):
        self._session = session
        self._company_id = company_id
        self._actor_id = actor_id
        self._clock = clock or SystemClock()
        self._config = config or FactorConfig()

        # Ledgers (share session for atomicity)
        self._receivables = receivables or ReceivablesLedger(
            session,
            clock=self._clock,
            open_statuses=self._config.eligible_installment_statuses,
        )
        self._payables = payables or PayablesLedger(session)
        self._packager = packager or PathTransmissionPackager()

        # Kernel services
        self._auditor = AuditorService(session, self._clock)
        self._sequences = SequenceService(session)
        self._postings = PostingRegistry(session)
        self._guard = StatusTransitionGuard(session, OPERATION_WORKFLOW)

    def _log_context(self, operation_id: UUID | None = None, version_id: UUID | None = None):
        return LogContext.bind(
            company_id=self._company_id,
            actor_id=self._actor_id,
            operation_id=operation_id,
            version_id=version_id,
        )

    def _audit(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        payload: dict | None = None,
    ) -> None:
        self._auditor.insert_audit_log(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=self._actor_id,
            company_id=self._company_id,
            payload=payload,
        )

    # =========================================================================
    # Factor registry
    # =========================================================================

    def _get_factor_model(self, factor_id: UUID) -> FactorModel:
        model = self._session.execute(
            select(FactorModel).where(
                FactorModel.id == factor_id,
                FactorModel.company_id == self._company_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise FactorNotFoundError(str(factor_id))
        return model

    def _validate_rate(self, name: str, value: Decimal) -> Decimal:
        if value is None or not value.is_finite():
            raise ValidationError(f"{name} must be a number")
        if value < 0 or value > self._config.max_rate_percent:
            raise ValidationError(
                f"{name} must be between 0 and {self._config.max_rate_percent}"
            )
        return value

    def _validate_grace_days(self, value: int) -> int:
        if value < 0 or value > self._config.max_grace_days:
            raise ValidationError(
                f"default_grace_days must be between 0 and {self._config.max_grace_days}"
            )
        return value

    def _ensure_code_free(self, code: str, exclude_id: UUID | None = None) -> None:
        stmt = select(FactorModel.id).where(
            FactorModel.company_id == self._company_id,
            FactorModel.code == code,
        )
        if exclude_id is not None:
            stmt = stmt.where(FactorModel.id != exclude_id)
        if self._session.execute(stmt).first() is not None:
            raise ValidationError(f"Factor code already in use: {code}")

    def create_factor(
        self,
        name: str,
        code: str | None = None,
        organization_id: UUID | None = None,
        default_interest_rate: Decimal = ZERO,
        default_fee_rate: Decimal = ZERO,
        default_iof_rate: Decimal = ZERO,
        default_other_cost_rate: Decimal = ZERO,
        default_grace_days: int = 0,
        default_auto_settle_buyback: bool = False,
        notes: str | None = None,
    ) -> Factor:
        """Register a financing counterpart with its default cost rates."""
        with self._log_context():
            try:
                if not name or not name.strip():
                    raise ValidationError("Factor name is required")
                code = code.strip() if code and code.strip() else None
                if code is not None:
                    self._ensure_code_free(code)

                rates = {
                    "default_interest_rate": default_interest_rate,
                    "default_fee_rate": default_fee_rate,
                    "default_iof_rate": default_iof_rate,
                    "default_other_cost_rate": default_other_cost_rate,
                }
                for field_name, value in rates.items():
                    self._validate_rate(field_name, value)
                self._validate_grace_days(default_grace_days)

                model = FactorModel(
                    company_id=self._company_id,
                    organization_id=organization_id,
                    name=name.strip(),
                    code=code,
                    default_grace_days=default_grace_days,
                    default_auto_settle_buyback=default_auto_settle_buyback,
                    is_active=True,
                    notes=notes,
                    created_by_id=self._actor_id,
                    **rates,
                )
                self._session.add(model)
                self._session.flush()

                self._audit(AuditEntityType.FACTOR, model.id, AuditAction.FACTOR_CREATED, {
                    "name": model.name,
                    "code": model.code,
                    **{k: str(v) for k, v in rates.items()},
                    "default_grace_days": default_grace_days,
                })
                self._session.commit()
                logger.info("factor_created", extra={
                    "factor_id": str(model.id),
                    "code": model.code,
                })
                return model.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def list_factors(self, include_inactive: bool = False) -> list[Factor]:
        stmt = select(FactorModel).where(FactorModel.company_id == self._company_id)
        if not include_inactive:
            stmt = stmt.where(FactorModel.is_active.is_(True))
        stmt = stmt.order_by(FactorModel.name)
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def get_factor(self, factor_id: UUID) -> Factor:
        return self._get_factor_model(factor_id).to_dto()

    def update_factor_defaults(
        self,
        factor_id: UUID,
        name: str | None = None,
        code: str | None = None,
        organization_id: UUID | None = None,
        default_interest_rate: Decimal | None = None,
        default_fee_rate: Decimal | None = None,
        default_iof_rate: Decimal | None = None,
        default_other_cost_rate: Decimal | None = None,
        default_grace_days: int | None = None,
        default_auto_settle_buyback: bool | None = None,
        notes: str | None = None,
    ) -> Factor:
        """
        Change a factor's data and default rates.

        Operations already created keep their frozen versions; only
        versions sent afterwards are priced with the new rates.
        """
        with self._log_context():
            try:
                model = self._get_factor_model(factor_id)
                changes: dict[str, object] = {}

                if name is not None:
                    if not name.strip():
                        raise ValidationError("Factor name is required")
                    changes["name"] = name.strip()
                if code is not None:
                    code = code.strip() or None
                    if code is not None:
                        self._ensure_code_free(code, exclude_id=model.id)
                    changes["code"] = code
                if organization_id is not None:
                    changes["organization_id"] = organization_id

                rates = {
                    "default_interest_rate": default_interest_rate,
                    "default_fee_rate": default_fee_rate,
                    "default_iof_rate": default_iof_rate,
                    "default_other_cost_rate": default_other_cost_rate,
                }
                for field_name, value in rates.items():
                    if value is not None:
                        changes[field_name] = self._validate_rate(field_name, value)
                if default_grace_days is not None:
                    changes["default_grace_days"] = self._validate_grace_days(
                        default_grace_days
                    )
                if default_auto_settle_buyback is not None:
                    changes["default_auto_settle_buyback"] = default_auto_settle_buyback
                if notes is not None:
                    changes["notes"] = notes

                if not changes:
                    return model.to_dto()

                for field_name, value in changes.items():
                    setattr(model, field_name, value)
                model.updated_by_id = self._actor_id
                self._session.flush()

                self._audit(AuditEntityType.FACTOR, model.id, AuditAction.FACTOR_UPDATED, {
                    "changes": {
                        k: v if isinstance(v, (bool, int)) else str(v)
                        for k, v in changes.items()
                    },
                })
                self._session.commit()
                logger.info("factor_updated", extra={
                    "factor_id": str(model.id),
                    "fields": sorted(changes),
                })
                return model.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def deactivate_factor(self, factor_id: UUID) -> Factor:
        """Stop offering new operations to a factor.  Existing ones continue."""
        with self._log_context():
            try:
                model = self._get_factor_model(factor_id)
                if not model.is_active:
                    return model.to_dto()

                model.is_active = False
                model.updated_by_id = self._actor_id
                self._session.flush()
                self._audit(
                    AuditEntityType.FACTOR, model.id, AuditAction.FACTOR_DEACTIVATED,
                    {"name": model.name},
                )
                self._session.commit()
                logger.info("factor_deactivated", extra={"factor_id": str(model.id)})
                return model.to_dto()

            except Exception:
                self._session.rollback()
                raise

    # =========================================================================
    # Operations
    # =========================================================================

    def _operation_query(self, operation_id: UUID):
        return select(FactorOperationModel).where(
            FactorOperationModel.id == operation_id,
            FactorOperationModel.company_id == self._company_id,
        )

    def _get_operation_model(self, operation_id: UUID) -> FactorOperationModel:
        model = self._session.execute(
            self._operation_query(operation_id)
        ).scalar_one_or_none()
        if model is None:
            raise OperationNotFoundError(str(operation_id))
        return model

    def _lock_operation(self, operation_id: UUID) -> FactorOperationModel:
        """SELECT ... FOR UPDATE on the operation row, refreshed from the database."""
        model = self._session.execute(
            self._operation_query(operation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise OperationNotFoundError(str(operation_id))
        return model

    def _require_draft(self, model: FactorOperationModel, action: str) -> None:
        if model.status != OperationStatus.DRAFT.value:
            raise OperationNotEditableError(str(model.id), model.status, action)

    def _items(self, operation_id: UUID) -> list[FactorOperationItemModel]:
        return list(self._session.execute(
            select(FactorOperationItemModel)
            .where(FactorOperationItemModel.operation_id == operation_id)
            .order_by(FactorOperationItemModel.line_no)
        ).scalars())

    def _responses(self, version_id: UUID | None) -> list[FactorOperationResponseModel]:
        if version_id is None:
            return []
        return list(self._session.execute(
            select(FactorOperationResponseModel)
            .where(FactorOperationResponseModel.version_id == version_id)
            .order_by(FactorOperationResponseModel.imported_at)
        ).scalars())

    def _get_version_model(
        self, operation_id: UUID, version_id: UUID,
    ) -> FactorOperationVersionModel:
        model = self._session.execute(
            select(FactorOperationVersionModel).where(
                FactorOperationVersionModel.id == version_id,
                FactorOperationVersionModel.operation_id == operation_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise VersionNotFoundError(str(operation_id), str(version_id))
        return model

    def _recompute_draft_totals(self, model: FactorOperationModel) -> None:
        gross = self._session.execute(
            select(func.coalesce(func.sum(FactorOperationItemModel.amount_snapshot), 0))
            .where(FactorOperationItemModel.operation_id == model.id)
        ).scalar_one()
        model.gross_amount = round_money(Decimal(str(gross)))
        model.net_amount = model.gross_amount - model.costs_amount

    def create_operation(
        self,
        factor_id: UUID,
        reference: str | None = None,
        issue_date: date | None = None,
        expected_settlement_date: date | None = None,
        settlement_account_id: UUID | None = None,
        notes: str | None = None,
    ) -> FactorOperation:
        """
        Open a draft operation against an active factor.

        The operation number comes from the company's locked counter.
        """
        with self._log_context():
            try:
                factor = self._get_factor_model(factor_id)
                if not factor.is_active:
                    raise InactiveFactorError(str(factor_id))

                number = self._sequences.next_value(
                    SequenceService.operation_sequence_name(self._company_id)
                )
                model = FactorOperationModel(
                    company_id=self._company_id,
                    factor_id=factor.id,
                    operation_number=number,
                    reference=reference,
                    issue_date=issue_date or self._clock.today(),
                    expected_settlement_date=expected_settlement_date,
                    settlement_account_id=settlement_account_id,
                    status=OperationStatus.DRAFT.value,
                    gross_amount=ZERO,
                    costs_amount=ZERO,
                    net_amount=ZERO,
                    version_counter=0,
                    notes=notes,
                    created_by_id=self._actor_id,
                )
                self._session.add(model)
                self._session.flush()

                self._audit(
                    AuditEntityType.OPERATION, model.id, AuditAction.OPERATION_CREATED,
                    {
                        "operation_number": number,
                        "factor_id": str(factor.id),
                        "issue_date": model.issue_date.isoformat(),
                        "reference": reference,
                    },
                )
                self._session.commit()
                logger.info("factor_operation_created", extra={
                    "operation_id": str(model.id),
                    "operation_number": number,
                    "factor_id": str(factor.id),
                })
                return model.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def list_operations(
        self,
        status: OperationStatus | str | None = None,
        factor_id: UUID | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[FactorOperation]:
        """Operations of the company, newest first."""
        stmt = select(FactorOperationModel).where(
            FactorOperationModel.company_id == self._company_id
        )
        if status is not None:
            value = status.value if isinstance(status, OperationStatus) else status
            stmt = stmt.where(FactorOperationModel.status == value)
        if factor_id is not None:
            stmt = stmt.where(FactorOperationModel.factor_id == factor_id)
        if search and search.strip():
            stmt = stmt.where(
                FactorOperationModel.reference.ilike(f"%{search.strip()}%")
            )
        stmt = stmt.order_by(FactorOperationModel.operation_number.desc()).limit(
            limit or self._config.operation_list_limit
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def get_operation_by_id(self, operation_id: UUID) -> FactorOperation:
        return self._get_operation_model(operation_id).to_dto()

    def get_operation_detail(self, operation_id: UUID) -> OperationDetail:
        """Operation with factor, items, versions, responses, postings and preview."""
        model = self._get_operation_model(operation_id)
        factor = self._get_factor_model(model.factor_id).to_dto()
        items = tuple(i.to_dto() for i in self._items(model.id))
        versions = tuple(
            v.to_dto()
            for v in self._session.execute(
                select(FactorOperationVersionModel)
                .where(FactorOperationVersionModel.operation_id == model.id)
                .order_by(FactorOperationVersionModel.version_number.desc())
            ).scalars()
        )
        responses = tuple(r.to_dto() for r in self._responses(model.current_version_id))
        return OperationDetail(
            operation=model.to_dto(),
            factor=factor,
            items=items,
            versions=versions,
            responses=responses,
            postings=tuple(self._postings.list_for_operation(model.id)),
            posting_preview=build_posting_preview(
                {item.id: item for item in items}, responses,
            ),
        )

    def update_operation(
        self,
        operation_id: UUID,
        notes: str | None = None,
        expected_settlement_date: date | None = None,
        settlement_account_id: UUID | None = None,
    ) -> FactorOperation:
        """Edit the free fields of a draft operation."""
        with self._log_context(operation_id):
            try:
                model = self._lock_operation(operation_id)
                self._require_draft(model, "update")

                changes: dict[str, str] = {}
                if notes is not None:
                    model.notes = notes
                    changes["notes"] = notes
                if expected_settlement_date is not None:
                    model.expected_settlement_date = expected_settlement_date
                    changes["expected_settlement_date"] = expected_settlement_date.isoformat()
                if settlement_account_id is not None:
                    model.settlement_account_id = settlement_account_id
                    changes["settlement_account_id"] = str(settlement_account_id)
                if not changes:
                    self._session.commit()
                    return model.to_dto()

                model.updated_by_id = self._actor_id
                self._session.flush()
                self._audit(
                    AuditEntityType.OPERATION, model.id, AuditAction.OPERATION_UPDATED,
                    {"changes": changes},
                )
                self._session.commit()
                logger.info("factor_operation_updated", extra={
                    "operation_id": str(model.id),
                    "fields": sorted(changes),
                })
                return model.to_dto()

            except Exception:
                self._session.rollback()
                raise

    # =========================================================================
    # Items
    # =========================================================================

    @staticmethod
    def _parse_action_type(action_type: ActionType | str) -> ActionType:
        if isinstance(action_type, ActionType):
            return action_type
        try:
            return ActionType(str(action_type).strip().lower())
        except ValueError:
            raise UnknownActionTypeError(
                str(action_type), [a.value for a in ActionType]
            ) from None

    def _check_eligibility(
        self,
        operation_id: UUID,
        action: ActionType,
        installment: ReceivableInstallment,
        proposed_due_date: date | None,
    ) -> None:
        def not_eligible(reason: str) -> InstallmentNotEligibleError:
            return InstallmentNotEligibleError(str(installment.id), action.value, reason)

        required = (
            CustodyStatus.OWN if action is ActionType.DISCOUNT
            else CustodyStatus.WITH_FACTOR
        )
        if installment.custody_status is not required:
            raise not_eligible(
                f"custody is {installment.custody_status.value}, "
                f"expected {required.value}"
            )
        if installment.status not in self._config.eligible_installment_statuses:
            raise not_eligible(f"installment status is {installment.status.value}")
        if installment.amount_open <= 0:
            raise not_eligible("installment has no open amount")
        if (
            action is ActionType.DISCOUNT
            and proposed_due_date is not None
            and proposed_due_date < installment.due_date
        ):
            raise not_eligible("proposed due date precedes the installment due date")

        duplicate = self._session.execute(
            select(FactorOperationItemModel.id).where(
                FactorOperationItemModel.operation_id == operation_id,
                FactorOperationItemModel.installment_id == installment.id,
            )
        ).first()
        if duplicate is not None:
            raise not_eligible("installment is already in this operation")

    def add_operation_item(
        self,
        operation_id: UUID,
        action_type: ActionType | str,
        installment_id: UUID,
        proposed_due_date: date | None = None,
        buyback_settle_now: bool | None = None,
        notes: str | None = None,
    ) -> OperationItem:
        """
        Add an installment to a draft operation, freezing its current terms.

        line_no is max + 1 under a row lock on the operation.
        """
        with self._log_context(operation_id):
            try:
                model = self._lock_operation(operation_id)
                self._require_draft(model, "add item")
                action = self._parse_action_type(action_type)

                installment = self._receivables.get_installment_by_id(
                    self._company_id, installment_id,
                )
                self._check_eligibility(model.id, action, installment, proposed_due_date)

                if buyback_settle_now is None:
                    factor = self._get_factor_model(model.factor_id)
                    buyback_settle_now = (
                        action is ActionType.BUYBACK
                        and factor.default_auto_settle_buyback
                    )

                last_line = self._session.execute(
                    select(func.coalesce(func.max(FactorOperationItemModel.line_no), 0))
                    .where(FactorOperationItemModel.operation_id == model.id)
                ).scalar_one()

                item = FactorOperationItemModel(
                    operation_id=model.id,
                    company_id=self._company_id,
                    line_no=int(last_line) + 1,
                    action_type=action.value,
                    installment_id=installment.id,
                    title_id=installment.title_id,
                    sales_document_id=installment.sales_document_id,
                    customer_id=installment.customer_id,
                    document_number_snapshot=installment.document_number,
                    customer_name_snapshot=installment.customer_name,
                    installment_number_snapshot=installment.installment_number,
                    due_date_snapshot=installment.due_date,
                    amount_snapshot=installment.amount_open,
                    proposed_due_date=proposed_due_date,
                    buyback_settle_now=bool(buyback_settle_now),
                    status="pending",
                    notes=notes,
                    created_by_id=self._actor_id,
                )
                self._session.add(item)
                self._session.flush()

                self._recompute_draft_totals(model)
                model.updated_by_id = self._actor_id
                self._session.flush()

                self._audit(
                    AuditEntityType.OPERATION_ITEM, item.id, AuditAction.ITEM_ADDED,
                    {
                        "operation_id": str(model.id),
                        "line_no": item.line_no,
                        "action_type": action.value,
                        "installment_id": str(installment.id),
                        "amount": str(installment.amount_open),
                    },
                )
                self._session.commit()
                logger.info("factor_item_added", extra={
                    "operation_id": str(model.id),
                    "item_id": str(item.id),
                    "line_no": item.line_no,
                    "action_type": action.value,
                })
                return item.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def delete_operation_item(self, operation_id: UUID, item_id: UUID) -> FactorOperation:
        """Remove an item from a draft operation.  Remaining lines keep their numbers."""
        with self._log_context(operation_id):
            try:
                model = self._lock_operation(operation_id)
                self._require_draft(model, "remove item")

                item = self._session.execute(
                    select(FactorOperationItemModel).where(
                        FactorOperationItemModel.id == item_id,
                        FactorOperationItemModel.operation_id == model.id,
                    )
                ).scalar_one_or_none()
                if item is None:
                    raise OperationItemNotFoundError(str(operation_id), str(item_id))

                line_no = item.line_no
                installment_id = item.installment_id
                self._session.delete(item)
                self._session.flush()

                self._recompute_draft_totals(model)
                model.updated_by_id = self._actor_id
                self._session.flush()

                self._audit(
                    AuditEntityType.OPERATION_ITEM, item_id, AuditAction.ITEM_REMOVED,
                    {
                        "operation_id": str(model.id),
                        "line_no": line_no,
                        "installment_id": str(installment_id),
                    },
                )
                self._session.commit()
                logger.info("factor_item_removed", extra={
                    "operation_id": str(model.id),
                    "item_id": str(item_id),
                    "line_no": line_no,
                })
                return model.to_dto()

            except Exception:
                self._session.rollback()
                raise

    def list_eligible_installments(
        self, query_text: str | None = None, limit: int | None = None,
    ) -> list[ReceivableInstallment]:
        """Discount candidates: open installments still in own custody."""
        return self._receivables.list_open_installments(
            self._company_id,
            query_text=query_text,
            limit=limit or self._config.installment_list_limit,
        )

    def list_installments_with_factor(
        self, limit: int | None = None,
    ) -> list[ReceivableInstallment]:
        """Buyback candidates: open installments held by a factor."""
        return self._receivables.list_installments_with_factor(
            self._company_id,
            limit=limit or self._config.installment_list_limit,
        )

    # =========================================================================
    # Send
    # =========================================================================

    def _current_version_dto(self, model: FactorOperationModel):
        if model.current_version_id is None:
            return None
        return self._get_version_model(model.id, model.current_version_id).to_dto()

    def _lost_send(self, operation_id: UUID) -> SendResult:
        model = self._get_operation_model(operation_id)
        self._session.refresh(model)
        result = SendResult(
            operation=model.to_dto(),
            version=self._current_version_dto(model),
            idempotent=True,
        )
        self._session.commit()
        logger.info("factor_send_lost_race", extra={
            "operation_id": str(model.id),
            "version_id": str(model.current_version_id),
        })
        return result

    def send_to_factor(self, operation_id: UUID) -> SendResult:
        """
        Freeze the draft as version ``version_counter + 1`` and mark it sent.

        An operation already sent, or a send that lost its version number or
        its compare-and-swap to a concurrent caller, returns the current
        version with ``idempotent=True``.
        """
        with self._log_context(operation_id):
            try:
                model = self._lock_operation(operation_id)
                if model.status == OperationStatus.SENT_TO_FACTOR.value:
                    result = SendResult(
                        operation=model.to_dto(),
                        version=self._current_version_dto(model),
                        idempotent=True,
                    )
                    self._session.commit()
                    logger.info("factor_send_idempotent", extra={
                        "operation_id": str(model.id),
                    })
                    return result

                self._guard.check(model.id, model.status, SEND)

                items = [i.to_dto() for i in self._items(model.id)]
                if not items:
                    raise EmptyOperationError(str(model.id))

                logger.info("factor_send_started", extra={
                    "operation_id": str(model.id),
                    "item_count": len(items),
                })

                factor = self._get_factor_model(model.factor_id).to_dto()
                operation = model.to_dto()
                now = self._clock.now()
                snapshot = build_version_snapshot(operation, factor, items, now)
                version_number = model.version_counter + 1
                artifacts = self._packager.package(operation, version_number, snapshot)
                totals = snapshot.totals

                savepoint = self._session.begin_nested()
                version = FactorOperationVersionModel(
                    operation_id=model.id,
                    company_id=self._company_id,
                    version_number=version_number,
                    source_status=model.status,
                    total_items=len(items),
                    gross_amount=totals.gross_amount,
                    costs_amount=totals.costs_amount,
                    net_amount=totals.net_amount,
                    snapshot_json=snapshot.snapshot_json,
                    snapshot_hash=snapshot.snapshot_hash,
                    csv_artifact_id=artifacts.csv_artifact_id,
                    zip_artifact_id=artifacts.zip_artifact_id,
                    report_artifact_id=artifacts.report_artifact_id,
                    sent_at=now,
                    sent_by_id=self._actor_id,
                    created_by_id=self._actor_id,
                )
                self._session.add(version)
                try:
                    self._session.flush()
                except IntegrityError:
                    # Another sender already stored this version number
                    savepoint.rollback()
                    return self._lost_send(operation_id)

                outcome = self._guard.transition(
                    FactorOperationModel,
                    model.id,
                    SEND,
                    values={
                        "sent_at": now,
                        "sent_by_id": self._actor_id,
                        "version_counter": version_number,
                        "current_version_id": version.id,
                        "gross_amount": totals.gross_amount,
                        "costs_amount": totals.costs_amount,
                        "net_amount": totals.net_amount,
                        "updated_by_id": self._actor_id,
                    },
                )
                if not outcome.applied:
                    savepoint.rollback()
                    return self._lost_send(operation_id)
                savepoint.commit()

                self._audit(
                    AuditEntityType.OPERATION_VERSION, version.id,
                    AuditAction.VERSION_CREATED,
                    {
                        "operation_id": str(model.id),
                        "version_number": version_number,
                        "snapshot_hash": snapshot.snapshot_hash,
                        "total_items": len(items),
                    },
                )
                self._audit(
                    AuditEntityType.OPERATION, model.id, AuditAction.OPERATION_SENT,
                    {
                        "version_id": str(version.id),
                        "version_number": version_number,
                        **totals.to_dict(),
                    },
                )
                self._session.refresh(model)
                result = SendResult(
                    operation=model.to_dto(),
                    version=version.to_dto(),
                    idempotent=False,
                )
                self._session.commit()
                logger.info("factor_operation_sent", extra={
                    "operation_id": str(model.id),
                    "version_number": version_number,
                    "snapshot_hash": snapshot.snapshot_hash,
                })
                return result

            except Exception:
                self._session.rollback()
                raise

    # =========================================================================
    # Responses
    # =========================================================================

    def apply_responses(
        self,
        operation_id: UUID,
        version_id: UUID,
        responses: Sequence[ResponseInput | Mapping],
    ) -> ApplyResponsesResult:
        """
        Record the factor's answer for the current version.

        Entries are upserted by (version, item); a repeated import
        overwrites the earlier answer.  Item outcomes and operation totals
        are recomputed from everything recorded for the version.
        Items that already have a settlement posting keep their answer.
        """
        with self._log_context(operation_id, version_id):
            try:
                model = self._lock_operation(operation_id)
                if model.status != OperationStatus.SENT_TO_FACTOR.value:
                    raise InvalidTransitionError(
                        str(model.id), model.status, "apply_responses",
                    )
                if model.current_version_id != version_id:
                    self._get_version_model(model.id, version_id)
                    raise VersionMismatchError(
                        str(model.id), str(version_id),
                        str(model.current_version_id) if model.current_version_id else None,
                    )

                inputs = [
                    r if isinstance(r, ResponseInput) else ResponseInput.from_mapping(r)
                    for r in responses
                ]
                item_models = {i.id: i for i in self._items(model.id)}
                validated = validate_responses(model.id, inputs, item_models.keys())
                for entry in validated:
                    if self._postings.exists(item_posting_key(entry.operation_item_id)):
                        raise ItemAlreadySettledError(str(model.id), str(entry.operation_item_id))

                logger.info("factor_apply_responses_started", extra={
                    "operation_id": str(model.id),
                    "version_id": str(version_id),
                    "response_count": len(validated),
                })

                now = self._clock.now()
                for entry in validated:
                    row = self._session.execute(
                        select(FactorOperationResponseModel).where(
                            FactorOperationResponseModel.version_id == version_id,
                            FactorOperationResponseModel.operation_item_id
                            == entry.operation_item_id,
                        )
                    ).scalar_one_or_none()
                    if row is None:
                        row = FactorOperationResponseModel(
                            version_id=version_id,
                            operation_id=model.id,
                            operation_item_id=entry.operation_item_id,
                            created_by_id=self._actor_id,
                        )
                        self._session.add(row)
                    else:
                        row.updated_by_id = self._actor_id

                    row.response_status = entry.response_status.value
                    row.response_code = entry.response_code
                    row.response_message = entry.response_message
                    row.accepted_amount = entry.accepted_amount
                    row.adjusted_amount = entry.adjusted_amount
                    row.adjusted_due_date = entry.adjusted_due_date
                    row.fee_amount = entry.fee_amount
                    row.interest_amount = entry.interest_amount
                    row.iof_amount = entry.iof_amount
                    row.other_cost_amount = entry.other_cost_amount
                    row.total_cost_amount = entry.total_cost_amount
                    row.imported_at = now
                    row.processed_by_id = self._actor_id

                    item = item_models[entry.operation_item_id]
                    outcome = resolve_item_outcome(item.to_dto(), entry)
                    item.status = outcome.status.value
                    item.final_amount = outcome.final_amount
                    item.final_due_date = outcome.final_due_date
                    item.updated_by_id = self._actor_id
                    self._session.flush()

                items = tuple(i.to_dto() for i in item_models.values())
                recorded = tuple(r.to_dto() for r in self._responses(version_id))
                totals = recompute_totals(items, recorded)

                model.gross_amount = totals.gross_amount
                model.costs_amount = totals.costs_amount
                model.net_amount = totals.net_amount
                model.last_response_at = now
                model.updated_by_id = self._actor_id
                self._session.flush()

                self._audit(
                    AuditEntityType.OPERATION, model.id, AuditAction.RESPONSE_APPLIED,
                    {
                        "version_id": str(version_id),
                        "responses": [
                            {
                                "operation_item_id": str(e.operation_item_id),
                                "response_status": e.response_status.value,
                            }
                            for e in validated
                        ],
                        **totals.to_dict(),
                    },
                )
                result = ApplyResponsesResult(
                    operation=model.to_dto(),
                    responses=recorded,
                    items=tuple(sorted(items, key=lambda i: i.line_no)),
                )
                self._session.commit()
                logger.info("factor_apply_responses_committed", extra={
                    "operation_id": str(model.id),
                    "version_id": str(version_id),
                    "gross_amount": str(totals.gross_amount),
                    "costs_amount": str(totals.costs_amount),
                })
                return result

            except Exception:
                self._session.rollback()
                raise

    # =========================================================================
    # Conclude / cancel
    # =========================================================================

    def conclude_operation(
        self,
        operation_id: UUID,
        settlement_date: date | None = None,
        notes: str | None = None,
    ) -> ConcludeResult:
        """
        Settle the accepted items and close the operation.

        A completed operation returns ``idempotent=True`` without work.
        Settlement failures raise SettlementIncompleteError; calling again
        applies only the postings still missing.
        """
        with self._log_context(operation_id):
            try:
                model = self._lock_operation(operation_id)
                if model.status == OperationStatus.COMPLETED.value:
                    result = ConcludeResult(
                        operation=model.to_dto(),
                        postings=tuple(self._postings.list_for_operation(model.id)),
                        idempotent=True,
                    )
                    self._session.commit()
                    logger.info("factor_conclude_idempotent", extra={
                        "operation_id": str(model.id),
                    })
                    return result

                self._guard.check(model.id, model.status, CONCLUDE)

                responses = [r.to_dto() for r in self._responses(model.current_version_id)]
                if not responses:
                    raise MissingResponsesError(
                        str(model.id),
                        str(model.current_version_id) if model.current_version_id else None,
                    )

                operation = model.to_dto()
                factor = self._get_factor_model(model.factor_id).to_dto()
                items = {i.id: i.to_dto() for i in self._items(model.id)}
                settle_on = settlement_date or operation.issue_date

                logger.info("factor_conclude_started", extra={
                    "operation_id": str(operation.id),
                    "settlement_date": settle_on.isoformat(),
                })

                engine = SettlementEngine(
                    session=self._session,
                    receivables=self._receivables,
                    payables=self._payables,
                    postings=self._postings,
                    auditor=self._auditor,
                    config=self._config,
                    checkpoint=self._session.commit,
                )
                settled = engine.settle(
                    operation, factor, items, responses, settle_on, self._actor_id,
                )

                values = {
                    "completed_at": self._clock.now(),
                    "completed_by_id": self._actor_id,
                    "updated_by_id": self._actor_id,
                }
                if notes is not None:
                    values["notes"] = notes
                outcome = self._guard.transition(
                    FactorOperationModel, operation.id, CONCLUDE, values=values,
                )
                if not outcome.applied:
                    self._session.rollback()
                    current = self._get_operation_model(operation.id)
                    if current.status != OperationStatus.COMPLETED.value:
                        raise InvalidTransitionError(
                            str(operation.id), current.status, CONCLUDE,
                        )
                    return ConcludeResult(
                        operation=current.to_dto(),
                        postings=tuple(self._postings.list_for_operation(operation.id)),
                        idempotent=True,
                    )

                self._session.commit()
                completed = self._get_operation_model(operation.id)
                logger.info("factor_operation_completed", extra={
                    "operation_id": str(operation.id),
                    "created_posting_keys": list(settled.created_posting_keys),
                })
                return ConcludeResult(
                    operation=completed.to_dto(),
                    postings=settled.postings,
                    created_posting_keys=settled.created_posting_keys,
                    idempotent=False,
                )

            except Exception:
                self._session.rollback()
                raise

    def cancel_operation(self, operation_id: UUID, reason: str) -> FactorOperation:
        """Cancel a draft or sent operation.  Nothing is posted."""
        with self._log_context(operation_id):
            try:
                reason = (reason or "").strip()
                if not (
                    self._config.cancel_reason_min_length
                    <= len(reason)
                    <= self._config.cancel_reason_max_length
                ):
                    raise ValidationError(
                        "Cancel reason must have between "
                        f"{self._config.cancel_reason_min_length} and "
                        f"{self._config.cancel_reason_max_length} characters"
                    )

                model = self._lock_operation(operation_id)
                self._guard.check(model.id, model.status, CANCEL)
                settled = self._postings.list_for_operation(model.id)
                if settled:
                    raise SettlementInProgressError(str(model.id), len(settled))
                previous_status = model.status

                outcome = self._guard.transition(
                    FactorOperationModel,
                    model.id,
                    CANCEL,
                    values={
                        "cancelled_at": self._clock.now(),
                        "cancelled_by_id": self._actor_id,
                        "cancel_reason": reason,
                        "updated_by_id": self._actor_id,
                    },
                )
                if not outcome.applied:
                    self._session.refresh(model)
                    raise InvalidTransitionError(str(model.id), model.status, CANCEL)

                self._audit(
                    AuditEntityType.OPERATION, model.id, AuditAction.OPERATION_CANCELLED,
                    {"reason": reason, "previous_status": previous_status},
                )
                self._session.refresh(model)
                result = model.to_dto()
                self._session.commit()
                logger.info("factor_operation_cancelled", extra={
                    "operation_id": str(model.id),
                    "previous_status": previous_status,
                })
                return result

            except Exception:
                self._session.rollback()
                raise
