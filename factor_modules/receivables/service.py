"""
Receivables Ledger (``factor_modules.receivables.service``).

Responsibility
--------------
The receivables side of a factor settlement: looks up installments,
lists the ones a factor operation can use, and moves their custody.

Architecture position
---------------------
**Modules layer** -- flush-only ledger adapter.  The FactorService and its
SettlementEngine own the transaction; every write here is flushed so that
a custody change and its posting marker share one unit of work.

Invariants enforced
-------------------
* Custody only moves own -> with_factor or with_factor -> repurchased
  (InvalidCustodyTransitionError otherwise).
* Lookups are scoped to the caller's company.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol, Sequence, runtime_checkable
from uuid import UUID, uuid4

from sqlalchemy import or_, select

from factor_kernel.domain.clock import Clock, SystemClock
from factor_kernel.exceptions import (
    InstallmentNotFoundError,
    InvalidCustodyTransitionError,
)
from factor_kernel.logging_config import get_logger
from factor_kernel.services.base import BaseService
from factor_modules.receivables.models import (
    CustodyStatus,
    InstallmentStatus,
    ReceivableInstallment,
)
from factor_modules.receivables.orm import ReceivableInstallmentModel

logger = get_logger("modules.receivables.service")

OPEN_STATUSES: tuple[InstallmentStatus, ...] = (
    InstallmentStatus.OPEN,
    InstallmentStatus.PARTIAL,
    InstallmentStatus.OVERDUE,
)


@runtime_checkable
class ReceivablesPort(Protocol):
    """Surface of the receivables ledger consumed by the factor engine."""

    def get_installment_by_id(
        self, company_id: UUID, installment_id: UUID,
    ) -> ReceivableInstallment: ...

    def list_open_installments(
        self, company_id: UUID, query_text: str | None = None, limit: int = 300,
    ) -> list[ReceivableInstallment]: ...

    def list_installments_with_factor(
        self, company_id: UUID, limit: int = 300,
    ) -> list[ReceivableInstallment]: ...

    def update_installment(
        self,
        company_id: UUID,
        installment_id: UUID,
        actor_id: UUID,
        custody_status: CustodyStatus | None = None,
        due_date: date | None = None,
        factor_id: UUID | None = None,
        operation_item_id: UUID | None = None,
    ) -> ReceivableInstallment: ...


class ReceivablesLedger(BaseService[ReceivableInstallmentModel]):
    """SQLAlchemy-backed receivables ledger."""

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        open_statuses: Sequence[InstallmentStatus] = OPEN_STATUSES,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._open_status_values = tuple(s.value for s in open_statuses)

    # =========================================================================
    # Registration
    # =========================================================================

    def register_installment(
        self,
        company_id: UUID,
        title_id: UUID,
        installment_number: int,
        due_date: date,
        amount_open: Decimal,
        actor_id: UUID,
        document_number: str | None = None,
        customer_id: UUID | None = None,
        customer_name: str | None = None,
        sales_document_id: UUID | None = None,
        status: InstallmentStatus = InstallmentStatus.OPEN,
        custody_status: CustodyStatus = CustodyStatus.OWN,
        factor_id: UUID | None = None,
    ) -> ReceivableInstallment:
        """Record an installment issued by the sales side."""
        dto = ReceivableInstallment(
            id=uuid4(),
            company_id=company_id,
            title_id=title_id,
            installment_number=installment_number,
            due_date=due_date,
            amount_open=amount_open,
            status=status,
            custody_status=custody_status,
            document_number=document_number,
            customer_id=customer_id,
            customer_name=customer_name,
            sales_document_id=sales_document_id,
            factor_id=factor_id,
        )
        model = ReceivableInstallmentModel.from_dto(dto, created_by_id=actor_id)
        self.session.add(model)
        self.session.flush()
        logger.info("receivable_installment_registered", extra={
            "installment_id": str(model.id),
            "title_id": str(title_id),
            "installment_number": installment_number,
            "amount_open": str(amount_open),
        })
        return model.to_dto()

    # =========================================================================
    # Queries
    # =========================================================================

    def _get_model(
        self, company_id: UUID, installment_id: UUID, lock: bool = False,
    ) -> ReceivableInstallmentModel:
        stmt = select(ReceivableInstallmentModel).where(
            ReceivableInstallmentModel.id == installment_id,
            ReceivableInstallmentModel.company_id == company_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise InstallmentNotFoundError(str(installment_id))
        return model

    def get_installment_by_id(
        self, company_id: UUID, installment_id: UUID,
    ) -> ReceivableInstallment:
        return self._get_model(company_id, installment_id).to_dto()

    def list_open_installments(
        self, company_id: UUID, query_text: str | None = None, limit: int = 300,
    ) -> list[ReceivableInstallment]:
        """Open installments still in own custody, earliest due first."""
        stmt = select(ReceivableInstallmentModel).where(
            ReceivableInstallmentModel.company_id == company_id,
            ReceivableInstallmentModel.factor_custody_status == CustodyStatus.OWN.value,
            ReceivableInstallmentModel.status.in_(self._open_status_values),
            ReceivableInstallmentModel.amount_open > 0,
        )
        if query_text and query_text.strip():
            pattern = f"%{query_text.strip()}%"
            stmt = stmt.where(or_(
                ReceivableInstallmentModel.document_number.ilike(pattern),
                ReceivableInstallmentModel.customer_name.ilike(pattern),
            ))
        stmt = stmt.order_by(
            ReceivableInstallmentModel.due_date,
            ReceivableInstallmentModel.document_number,
            ReceivableInstallmentModel.installment_number,
        ).limit(limit)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def list_installments_with_factor(
        self, company_id: UUID, limit: int = 300,
    ) -> list[ReceivableInstallment]:
        """Open installments currently held by a factor (buyback candidates)."""
        stmt = (
            select(ReceivableInstallmentModel)
            .where(
                ReceivableInstallmentModel.company_id == company_id,
                ReceivableInstallmentModel.factor_custody_status
                == CustodyStatus.WITH_FACTOR.value,
                ReceivableInstallmentModel.status.in_(self._open_status_values),
                ReceivableInstallmentModel.amount_open > 0,
            )
            .order_by(
                ReceivableInstallmentModel.due_date,
                ReceivableInstallmentModel.document_number,
                ReceivableInstallmentModel.installment_number,
            )
            .limit(limit)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    # =========================================================================
    # Custody
    # =========================================================================

    def update_installment(
        self,
        company_id: UUID,
        installment_id: UUID,
        actor_id: UUID,
        custody_status: CustodyStatus | None = None,
        due_date: date | None = None,
        factor_id: UUID | None = None,
        operation_item_id: UUID | None = None,
    ) -> ReceivableInstallment:
        """
        Apply a settlement effect to one installment.

        Moving to ``with_factor`` stamps factor_assigned_at; moving to
        ``repurchased`` stamps factor_released_at.
        """
        model = self._get_model(company_id, installment_id, lock=True)

        if custody_status is not None:
            current = CustodyStatus(model.factor_custody_status)
            if not current.can_move_to(custody_status):
                raise InvalidCustodyTransitionError(
                    str(installment_id), current.value, custody_status.value,
                )
            model.factor_custody_status = custody_status.value
            if custody_status is CustodyStatus.WITH_FACTOR:
                model.factor_assigned_at = self._clock.now()
            elif custody_status is CustodyStatus.REPURCHASED:
                model.factor_released_at = self._clock.now()

        if due_date is not None:
            model.due_date = due_date
        if factor_id is not None:
            model.factor_id = factor_id
        if operation_item_id is not None:
            model.factor_operation_item_id = operation_item_id
        model.updated_by_id = actor_id

        self.session.flush()
        logger.info("receivable_installment_updated", extra={
            "installment_id": str(installment_id),
            "custody_status": model.factor_custody_status,
            "due_date": model.due_date.isoformat(),
        })
        return model.to_dto()
