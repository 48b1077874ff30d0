"""
Factor ORM Models (``factor_modules.factor.orm``).

Responsibility
--------------
SQLAlchemy persistence models for the factor module.  Maps the frozen
domain dataclasses from ``models.py`` to database tables.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``factor_kernel.db.base``
and sibling ``models.py``.

Invariants enforced
-------------------
* (company_id, operation_number) unique.
* (operation_id, line_no) unique; (operation_id, installment_id) unique.
* (operation_id, version_number) unique.
* (version_id, operation_item_id) unique -- the response upsert key.
* Versions are append-only (``factor_kernel.db.immutability``).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Numeric,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from factor_kernel.db.base import TrackedBase


# ---------------------------------------------------------------------------
# 1. FactorModel
# ---------------------------------------------------------------------------


class FactorModel(TrackedBase):
    """
    ORM model for factors (financing counterparts).

    Guarantees:
        - code is unique within a company when given.
        - Rates are percentages stored as Numeric(9, 4).
    """

    __tablename__ = "factors"

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_factors_company_code"),
        Index("idx_factors_company", "company_id"),
    )

    company_id: Mapped[UUID]
    organization_id: Mapped[UUID | None] = mapped_column(nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    default_interest_rate: Mapped[Decimal] = mapped_column(
        Numeric(9, 4), default=Decimal("0")
    )
    default_fee_rate: Mapped[Decimal] = mapped_column(
        Numeric(9, 4), default=Decimal("0")
    )
    default_iof_rate: Mapped[Decimal] = mapped_column(
        Numeric(9, 4), default=Decimal("0")
    )
    default_other_cost_rate: Mapped[Decimal] = mapped_column(
        Numeric(9, 4), default=Decimal("0")
    )
    default_grace_days: Mapped[int] = mapped_column(default=0)
    default_auto_settle_buyback: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from factor_modules.factor.models import Factor

        return Factor(
            id=self.id,
            company_id=self.company_id,
            name=self.name,
            code=self.code,
            organization_id=self.organization_id,
            default_interest_rate=self.default_interest_rate,
            default_fee_rate=self.default_fee_rate,
            default_iof_rate=self.default_iof_rate,
            default_other_cost_rate=self.default_other_cost_rate,
            default_grace_days=self.default_grace_days,
            default_auto_settle_buyback=self.default_auto_settle_buyback,
            is_active=self.is_active,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<FactorModel {self.code}: {self.name}>"


# ---------------------------------------------------------------------------
# 2. FactorOperationModel
# ---------------------------------------------------------------------------


class FactorOperationModel(TrackedBase):
    """
    ORM model for factor operations.

    Guarantees:
        - operation_number is unique per company.
        - status stored as string enum value and only changed through
          ``StatusTransitionGuard``.
    """

    __tablename__ = "factor_operations"

    __table_args__ = (
        UniqueConstraint(
            "company_id", "operation_number", name="uq_factor_operations_number"
        ),
        Index("idx_factor_operations_company_status", "company_id", "status"),
        Index("idx_factor_operations_factor", "factor_id"),
    )

    company_id: Mapped[UUID]
    factor_id: Mapped[UUID] = mapped_column(ForeignKey("factors.id"), nullable=False)
    operation_number: Mapped[int]
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_settlement_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    settlement_account_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="draft")
    gross_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    costs_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    version_counter: Mapped[int] = mapped_column(default=0)
    current_version_id: Mapped[UUID | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    last_response_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from factor_modules.factor.models import FactorOperation, OperationStatus

        return FactorOperation(
            id=self.id,
            company_id=self.company_id,
            factor_id=self.factor_id,
            operation_number=self.operation_number,
            issue_date=self.issue_date,
            status=OperationStatus(self.status),
            reference=self.reference,
            expected_settlement_date=self.expected_settlement_date,
            settlement_account_id=self.settlement_account_id,
            gross_amount=self.gross_amount,
            costs_amount=self.costs_amount,
            net_amount=self.net_amount,
            version_counter=self.version_counter,
            current_version_id=self.current_version_id,
            sent_at=self.sent_at,
            sent_by_id=self.sent_by_id,
            last_response_at=self.last_response_at,
            completed_at=self.completed_at,
            completed_by_id=self.completed_by_id,
            cancelled_at=self.cancelled_at,
            cancelled_by_id=self.cancelled_by_id,
            cancel_reason=self.cancel_reason,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<FactorOperationModel #{self.operation_number} {self.status}>"


# ---------------------------------------------------------------------------
# 3. FactorOperationItemModel
# ---------------------------------------------------------------------------


class FactorOperationItemModel(TrackedBase):
    """
    ORM model for operation items.

    Guarantees:
        - line_no is unique per operation and never renumbered.
        - The *_snapshot columns hold the installment terms at selection.
    """

    __tablename__ = "factor_operation_items"

    __table_args__ = (
        UniqueConstraint("operation_id", "line_no", name="uq_factor_items_line_no"),
        UniqueConstraint(
            "operation_id", "installment_id", name="uq_factor_items_installment"
        ),
        Index("idx_factor_items_installment", "installment_id"),
    )

    operation_id: Mapped[UUID] = mapped_column(
        ForeignKey("factor_operations.id"), nullable=False
    )
    company_id: Mapped[UUID]
    line_no: Mapped[int]
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)
    installment_id: Mapped[UUID]
    title_id: Mapped[UUID]
    sales_document_id: Mapped[UUID | None] = mapped_column(nullable=True)
    customer_id: Mapped[UUID | None] = mapped_column(nullable=True)
    document_number_snapshot: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    customer_name_snapshot: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    installment_number_snapshot: Mapped[int]
    due_date_snapshot: Mapped[date] = mapped_column(Date, nullable=False)
    amount_snapshot: Mapped[Decimal]
    proposed_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    buyback_settle_now: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    final_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    final_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from factor_modules.factor.models import ActionType, ItemStatus, OperationItem

        return OperationItem(
            id=self.id,
            operation_id=self.operation_id,
            line_no=self.line_no,
            action_type=ActionType(self.action_type),
            installment_id=self.installment_id,
            title_id=self.title_id,
            installment_number_snapshot=self.installment_number_snapshot,
            due_date_snapshot=self.due_date_snapshot,
            amount_snapshot=self.amount_snapshot,
            status=ItemStatus(self.status),
            sales_document_id=self.sales_document_id,
            customer_id=self.customer_id,
            document_number_snapshot=self.document_number_snapshot,
            customer_name_snapshot=self.customer_name_snapshot,
            proposed_due_date=self.proposed_due_date,
            buyback_settle_now=self.buyback_settle_now,
            final_amount=self.final_amount,
            final_due_date=self.final_due_date,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<FactorOperationItemModel line {self.line_no} {self.action_type}>"


# ---------------------------------------------------------------------------
# 4. FactorOperationVersionModel
# ---------------------------------------------------------------------------


class FactorOperationVersionModel(TrackedBase):
    """
    ORM model for versions sent to the factor.

    Guarantees:
        - version_number is unique per operation, starting at 1.
        - Rows are never updated or deleted.
    """

    __tablename__ = "factor_operation_versions"

    __table_args__ = (
        UniqueConstraint(
            "operation_id", "version_number", name="uq_factor_versions_number"
        ),
    )

    operation_id: Mapped[UUID] = mapped_column(
        ForeignKey("factor_operations.id"), nullable=False
    )
    company_id: Mapped[UUID]
    version_number: Mapped[int]
    source_status: Mapped[str] = mapped_column(String(20), nullable=False)
    total_items: Mapped[int]
    gross_amount: Mapped[Decimal]
    costs_amount: Mapped[Decimal]
    net_amount: Mapped[Decimal]
    snapshot_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    snapshot_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    csv_artifact_id: Mapped[str | None] = mapped_column(String(500), nullable=True)
    zip_artifact_id: Mapped[str | None] = mapped_column(String(500), nullable=True)
    report_artifact_id: Mapped[str | None] = mapped_column(String(500), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from factor_modules.factor.models import OperationVersion

        return OperationVersion(
            id=self.id,
            operation_id=self.operation_id,
            version_number=self.version_number,
            source_status=self.source_status,
            total_items=self.total_items,
            gross_amount=self.gross_amount,
            costs_amount=self.costs_amount,
            net_amount=self.net_amount,
            snapshot_json=dict(self.snapshot_json),
            snapshot_hash=self.snapshot_hash,
            csv_artifact_id=self.csv_artifact_id,
            zip_artifact_id=self.zip_artifact_id,
            report_artifact_id=self.report_artifact_id,
            sent_at=self.sent_at,
            sent_by_id=self.sent_by_id,
        )

    def __repr__(self) -> str:
        return f"<FactorOperationVersionModel v{self.version_number}>"


# ---------------------------------------------------------------------------
# 5. FactorOperationResponseModel
# ---------------------------------------------------------------------------


class FactorOperationResponseModel(TrackedBase):
    """
    ORM model for factor responses.

    Guarantees:
        - One row per (version_id, operation_item_id); re-imports overwrite it.
    """

    __tablename__ = "factor_operation_responses"

    __table_args__ = (
        UniqueConstraint(
            "version_id", "operation_item_id", name="uq_factor_responses_version_item"
        ),
        Index("idx_factor_responses_operation", "operation_id"),
    )

    version_id: Mapped[UUID] = mapped_column(
        ForeignKey("factor_operation_versions.id"), nullable=False
    )
    operation_id: Mapped[UUID] = mapped_column(
        ForeignKey("factor_operations.id"), nullable=False
    )
    operation_item_id: Mapped[UUID] = mapped_column(
        ForeignKey("factor_operation_items.id"), nullable=False
    )
    response_status: Mapped[str] = mapped_column(String(20), nullable=False)
    response_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    response_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    accepted_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    adjusted_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    adjusted_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    fee_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    interest_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    iof_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    other_cost_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_cost_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    imported_at: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from factor_modules.factor.models import OperationResponse, ResponseStatus

        return OperationResponse(
            id=self.id,
            version_id=self.version_id,
            operation_item_id=self.operation_item_id,
            response_status=ResponseStatus(self.response_status),
            response_code=self.response_code,
            response_message=self.response_message,
            accepted_amount=self.accepted_amount,
            adjusted_amount=self.adjusted_amount,
            adjusted_due_date=self.adjusted_due_date,
            fee_amount=self.fee_amount,
            interest_amount=self.interest_amount,
            iof_amount=self.iof_amount,
            other_cost_amount=self.other_cost_amount,
            total_cost_amount=self.total_cost_amount,
            imported_at=self.imported_at,
            processed_by_id=self.processed_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<FactorOperationResponseModel item {self.operation_item_id} "
            f"{self.response_status}>"
        )
