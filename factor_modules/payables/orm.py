"""
Payables ORM Models (``factor_modules.payables.orm``).

Responsibility
--------------
SQLAlchemy persistence for payable titles and their installments.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``factor_kernel.db.base``
and sibling ``models.py``.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from factor_kernel.db.base import TrackedBase


class PayableTitleModel(TrackedBase):
    """
    ORM model for payable titles.

    Guarantees:
        - (company_id, document_number) is unique.
        - status stored as string enum value.
    """

    __tablename__ = "ap_titles"

    __table_args__ = (
        UniqueConstraint(
            "company_id", "document_number", name="uq_ap_titles_document_number"
        ),
        Index("idx_ap_titles_organization", "organization_id"),
        Index("idx_ap_titles_origin", "origin_type", "origin_id"),
    )

    company_id: Mapped[UUID]
    organization_id: Mapped[UUID]
    document_number: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_total: Mapped[Decimal]
    amount_paid: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    amount_open: Mapped[Decimal]
    status: Mapped[str] = mapped_column(String(20), default="open")
    origin_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    origin_id: Mapped[UUID | None] = mapped_column(nullable=True)

    installments: Mapped[list["PayableInstallmentModel"]] = relationship(
        back_populates="title",
        order_by="PayableInstallmentModel.installment_number",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from factor_modules.payables.models import PayableStatus, PayableTitle

        return PayableTitle(
            id=self.id,
            company_id=self.company_id,
            organization_id=self.organization_id,
            document_number=self.document_number,
            issue_date=self.issue_date,
            amount_total=self.amount_total,
            amount_paid=self.amount_paid,
            amount_open=self.amount_open,
            description=self.description,
            status=PayableStatus(self.status),
            origin_type=self.origin_type,
            origin_id=self.origin_id,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "PayableTitleModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            company_id=dto.company_id,
            organization_id=dto.organization_id,
            document_number=dto.document_number,
            description=dto.description,
            issue_date=dto.issue_date,
            amount_total=dto.amount_total,
            amount_paid=dto.amount_paid,
            amount_open=dto.amount_open,
            status=dto.status.value,
            origin_type=dto.origin_type,
            origin_id=dto.origin_id,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<PayableTitleModel {self.document_number}: {self.amount_total}>"


class PayableInstallmentModel(TrackedBase):
    """
    ORM model for payable installments.

    Guarantees:
        - title_id FK to ap_titles.id.
        - (title_id, installment_number) is unique.
    """

    __tablename__ = "ap_installments"

    __table_args__ = (
        UniqueConstraint(
            "title_id", "installment_number", name="uq_ap_installments_title_number"
        ),
        Index("idx_ap_installments_due_date", "due_date"),
    )

    title_id: Mapped[UUID] = mapped_column(ForeignKey("ap_titles.id"), nullable=False)
    installment_number: Mapped[int]
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_original: Mapped[Decimal]
    amount_paid: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    amount_open: Mapped[Decimal]
    status: Mapped[str] = mapped_column(String(20), default="open")

    title: Mapped[PayableTitleModel] = relationship(back_populates="installments")

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from factor_modules.payables.models import PayableInstallment, PayableStatus

        return PayableInstallment(
            id=self.id,
            title_id=self.title_id,
            installment_number=self.installment_number,
            due_date=self.due_date,
            amount_original=self.amount_original,
            amount_paid=self.amount_paid,
            amount_open=self.amount_open,
            status=PayableStatus(self.status),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "PayableInstallmentModel":
        """Create ORM model from frozen dataclass."""
        return cls(
            id=dto.id,
            title_id=dto.title_id,
            installment_number=dto.installment_number,
            due_date=dto.due_date,
            amount_original=dto.amount_original,
            amount_paid=dto.amount_paid,
            amount_open=dto.amount_open,
            status=dto.status.value,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<PayableInstallmentModel {self.title_id}#{self.installment_number}: "
            f"{self.amount_open}>"
        )
