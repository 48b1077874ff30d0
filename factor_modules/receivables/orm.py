"""
Receivables ORM Models (``factor_modules.receivables.orm``).

Responsibility
--------------
SQLAlchemy persistence for receivable installments.  Maps the
``ReceivableInstallment`` frozen dataclass to the ``ar_installments`` table.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``factor_kernel.db.base``
and sibling ``models.py``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from factor_kernel.db.base import TrackedBase


class ReceivableInstallmentModel(TrackedBase):
    """
    ORM model for receivable installments.

    Guarantees:
        - (title_id, installment_number) is unique.
        - status and factor_custody_status stored as string enum values.
    """

    __tablename__ = "ar_installments"

    __table_args__ = (
        UniqueConstraint(
            "title_id", "installment_number", name="uq_ar_installments_title_number"
        ),
        Index("idx_ar_installments_company", "company_id"),
        Index("idx_ar_installments_custody", "company_id", "factor_custody_status"),
        Index("idx_ar_installments_due_date", "due_date"),
    )

    company_id: Mapped[UUID]
    title_id: Mapped[UUID]
    document_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    customer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sales_document_id: Mapped[UUID | None] = mapped_column(nullable=True)
    installment_number: Mapped[int]
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_open: Mapped[Decimal]
    status: Mapped[str] = mapped_column(String(20), default="open")
    factor_custody_status: Mapped[str] = mapped_column(String(20), default="own")
    factor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    factor_operation_item_id: Mapped[UUID | None] = mapped_column(nullable=True)
    factor_assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    factor_released_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from factor_modules.receivables.models import (
            CustodyStatus,
            InstallmentStatus,
            ReceivableInstallment,
        )

        return ReceivableInstallment(
            id=self.id,
            company_id=self.company_id,
            title_id=self.title_id,
            installment_number=self.installment_number,
            due_date=self.due_date,
            amount_open=self.amount_open,
            status=InstallmentStatus(self.status),
            custody_status=CustodyStatus(self.factor_custody_status),
            document_number=self.document_number,
            customer_id=self.customer_id,
            customer_name=self.customer_name,
            sales_document_id=self.sales_document_id,
            factor_id=self.factor_id,
            factor_operation_item_id=self.factor_operation_item_id,
            factor_assigned_at=self.factor_assigned_at,
            factor_released_at=self.factor_released_at,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "ReceivableInstallmentModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            company_id=dto.company_id,
            title_id=dto.title_id,
            document_number=dto.document_number,
            customer_id=dto.customer_id,
            customer_name=dto.customer_name,
            sales_document_id=dto.sales_document_id,
            installment_number=dto.installment_number,
            due_date=dto.due_date,
            amount_open=dto.amount_open,
            status=dto.status.value,
            factor_custody_status=dto.custody_status.value,
            factor_id=dto.factor_id,
            factor_operation_item_id=dto.factor_operation_item_id,
            factor_assigned_at=dto.factor_assigned_at,
            factor_released_at=dto.factor_released_at,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<ReceivableInstallmentModel {self.document_number}/"
            f"{self.installment_number} {self.factor_custody_status}>"
        )
