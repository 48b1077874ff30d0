"""
Payables Ledger (``factor_modules.payables.service``).

Responsibility
--------------
Registers the payable title and installment that carry a factor's costs.

Architecture position
---------------------
**Modules layer** -- flush-only ledger adapter.  The caller owns the
transaction.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID, uuid4

from sqlalchemy import select

from factor_kernel.logging_config import get_logger
from factor_kernel.services.base import BaseService
from factor_modules.payables.models import (
    PayableInstallment,
    PayableStatus,
    PayableTitle,
)
from factor_modules.payables.orm import PayableInstallmentModel, PayableTitleModel

logger = get_logger("modules.payables.service")


@runtime_checkable
class PayablesPort(Protocol):
    """Surface of the payables ledger consumed by the factor engine."""

    def create_ap_title(
        self,
        company_id: UUID,
        organization_id: UUID,
        amount_total: Decimal,
        issue_date: date,
        document_number: str,
        actor_id: UUID,
        description: str | None = None,
        origin_type: str | None = None,
        origin_id: UUID | None = None,
    ) -> PayableTitle: ...

    def create_ap_installment(
        self,
        title_id: UUID,
        installment_number: int,
        due_date: date,
        amount: Decimal,
        actor_id: UUID,
    ) -> PayableInstallment: ...


class PayablesLedger(BaseService[PayableTitleModel]):
    """SQLAlchemy-backed payables ledger."""

    def create_ap_title(
        self,
        company_id: UUID,
        organization_id: UUID,
        amount_total: Decimal,
        issue_date: date,
        document_number: str,
        actor_id: UUID,
        description: str | None = None,
        origin_type: str | None = None,
        origin_id: UUID | None = None,
    ) -> PayableTitle:
        dto = PayableTitle(
            id=uuid4(),
            company_id=company_id,
            organization_id=organization_id,
            document_number=document_number,
            issue_date=issue_date,
            amount_total=amount_total,
            description=description,
            status=PayableStatus.OPEN,
            origin_type=origin_type,
            origin_id=origin_id,
        )
        model = PayableTitleModel.from_dto(dto, created_by_id=actor_id)
        self.session.add(model)
        self.session.flush()
        logger.info("ap_title_created", extra={
            "title_id": str(model.id),
            "document_number": document_number,
            "organization_id": str(organization_id),
            "amount_total": str(amount_total),
        })
        return model.to_dto()

    def create_ap_installment(
        self,
        title_id: UUID,
        installment_number: int,
        due_date: date,
        amount: Decimal,
        actor_id: UUID,
    ) -> PayableInstallment:
        dto = PayableInstallment(
            id=uuid4(),
            title_id=title_id,
            installment_number=installment_number,
            due_date=due_date,
            amount_original=amount,
            status=PayableStatus.OPEN,
        )
        model = PayableInstallmentModel.from_dto(dto, created_by_id=actor_id)
        self.session.add(model)
        self.session.flush()
        logger.info("ap_installment_created", extra={
            "title_id": str(title_id),
            "installment_number": installment_number,
            "amount": str(amount),
        })
        return model.to_dto()

    def get_title(self, title_id: UUID) -> PayableTitle | None:
        model = self.session.get(PayableTitleModel, title_id)
        return model.to_dto() if model else None

    def list_installments(self, title_id: UUID) -> list[PayableInstallment]:
        stmt = (
            select(PayableInstallmentModel)
            .where(PayableInstallmentModel.title_id == title_id)
            .order_by(PayableInstallmentModel.installment_number)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def list_titles_for_origin(
        self, origin_type: str, origin_id: UUID,
    ) -> list[PayableTitle]:
        stmt = (
            select(PayableTitleModel)
            .where(
                PayableTitleModel.origin_type == origin_type,
                PayableTitleModel.origin_id == origin_id,
            )
            .order_by(PayableTitleModel.document_number)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]
