"""
Version & transmission packaging (``factor_modules.factor.packager``).

Responsibility
--------------
Freezes what is sent to the factor:

* ``build_version_snapshot`` serializes the operation header, the factor,
  every item and the estimated discount costs into a JSON-native dict and
  returns it with the estimated totals.
* ``TransmissionPackager`` implementations turn a frozen version into the
  artifact identifiers (CSV, ZIP, report) stored on the version row.  The
  file formats themselves live outside the engine.

Architecture position
---------------------
**Modules layer** -- pure functions plus a small collaborator protocol.
ZERO database access.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, Sequence, runtime_checkable
from uuid import UUID

from factor_kernel.db.types import ZERO, round_money
from factor_kernel.logging_config import get_logger
from factor_kernel.utils.hashing import hash_version_snapshot
from factor_modules.factor.costs import (
    FactorRates,
    OperationTotals,
    aggregate_operation_totals,
    calculate_discount_costs,
)
from factor_modules.factor.models import (
    ActionType,
    Factor,
    FactorOperation,
    OperationItem,
)

logger = get_logger("modules.factor.packager")


@dataclass(frozen=True)
class TransmissionArtifacts:
    """Identifiers of the files that make up one transmitted version."""
    csv_artifact_id: str | None = None
    zip_artifact_id: str | None = None
    report_artifact_id: str | None = None


@dataclass(frozen=True)
class VersionSnapshot:
    """Serialized version content, its hash and the estimated totals."""
    snapshot_json: dict[str, Any]
    snapshot_hash: str
    totals: OperationTotals


@runtime_checkable
class TransmissionPackager(Protocol):
    """Produces artifact identifiers for a frozen version."""

    def package(
        self,
        operation: FactorOperation,
        version_number: int,
        snapshot: VersionSnapshot,
    ) -> TransmissionArtifacts: ...


class PathTransmissionPackager:
    """
    Derives artifact paths from configuration without writing files.

    Layout: ``<base_path>/<company_id>/<operation_number>/v<version>/<file>``.
    """

    def __init__(
        self,
        base_path: str = "factor/packages",
        csv_filename: str = "remessa.csv",
        zip_filename: str = "pacote.zip",
        report_filename: str = "relatorio.pdf",
    ):
        self._base_path = base_path.rstrip("/")
        self._csv_filename = csv_filename
        self._zip_filename = zip_filename
        self._report_filename = report_filename

    @classmethod
    def from_settings(cls, settings) -> "PathTransmissionPackager":
        """Build from ``factor_config.PackagingSettings``."""
        return cls(
            base_path=settings.base_path,
            csv_filename=settings.csv_filename,
            zip_filename=settings.zip_filename,
            report_filename=settings.report_filename,
        )

    def package(
        self,
        operation: FactorOperation,
        version_number: int,
        snapshot: VersionSnapshot,
    ) -> TransmissionArtifacts:
        folder = (
            f"{self._base_path}/{operation.company_id}/"
            f"{operation.operation_number}/v{version_number}"
        )
        artifacts = TransmissionArtifacts(
            csv_artifact_id=f"{folder}/{self._csv_filename}",
            zip_artifact_id=f"{folder}/{self._zip_filename}",
            report_artifact_id=f"{folder}/{self._report_filename}",
        )
        logger.debug("factor_package_paths_derived", extra={
            "operation_id": str(operation.id),
            "version_number": version_number,
            "folder": folder,
        })
        return artifacts


def rates_for(factor: Factor) -> FactorRates:
    return FactorRates(
        interest_rate=factor.default_interest_rate,
        fee_rate=factor.default_fee_rate,
        iof_rate=factor.default_iof_rate,
        other_cost_rate=factor.default_other_cost_rate,
        grace_days=factor.default_grace_days,
    )


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return str(round_money(value))
    if isinstance(value, (UUID, datetime)):
        return str(value) if isinstance(value, UUID) else value.isoformat()
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def _item_entry(item: OperationItem, estimated_costs: dict | None) -> dict[str, Any]:
    return {
        "id": str(item.id),
        "line_no": item.line_no,
        "action_type": item.action_type.value,
        "installment_id": str(item.installment_id),
        "title_id": str(item.title_id),
        "sales_document_id": _text(item.sales_document_id),
        "customer_id": _text(item.customer_id),
        "document_number": item.document_number_snapshot,
        "customer_name": item.customer_name_snapshot,
        "installment_number": item.installment_number_snapshot,
        "due_date": _text(item.due_date_snapshot),
        "amount": _text(item.amount_snapshot),
        "proposed_due_date": _text(item.proposed_due_date),
        "buyback_settle_now": item.buyback_settle_now,
        "notes": item.notes,
        "estimated_costs": estimated_costs,
    }


def build_version_snapshot(
    operation: FactorOperation,
    factor: Factor,
    items: Sequence[OperationItem],
    generated_at: datetime,
) -> VersionSnapshot:
    """
    Serialize the operation as sent.

    Discount items carry estimated costs priced with the factor's current
    default rates; buyback items carry ``None``.
    """
    rates = rates_for(factor)
    gross = ZERO
    interest = fee = iof = other = ZERO
    entries: list[dict[str, Any]] = []

    for item in sorted(items, key=lambda i: i.line_no):
        gross += item.amount_snapshot
        if item.action_type is ActionType.DISCOUNT:
            cost = calculate_discount_costs(
                item.amount_snapshot,
                operation.issue_date,
                item.due_date_snapshot,
                rates,
            )
            interest += cost.interest_amount
            fee += cost.fee_amount
            iof += cost.iof_amount
            other += cost.other_cost_amount
            entries.append(_item_entry(item, cost.to_dict()))
        else:
            entries.append(_item_entry(item, None))

    totals = aggregate_operation_totals(
        gross_amount=gross,
        interest_amount=interest,
        fee_amount=fee,
        iof_amount=iof,
        other_cost_amount=other,
    )

    snapshot = {
        "generated_at": generated_at.isoformat(),
        "operation": {
            "id": str(operation.id),
            "operation_number": operation.operation_number,
            "reference": operation.reference,
            "issue_date": _text(operation.issue_date),
            "expected_settlement_date": _text(operation.expected_settlement_date),
        },
        "factor": {
            "id": str(factor.id),
            "name": factor.name,
            "code": factor.code,
            "rates": {
                "interest_rate": str(factor.default_interest_rate),
                "fee_rate": str(factor.default_fee_rate),
                "iof_rate": str(factor.default_iof_rate),
                "other_cost_rate": str(factor.default_other_cost_rate),
                "grace_days": factor.default_grace_days,
            },
        },
        "items": entries,
        "totals": totals.to_dict(),
    }
    return VersionSnapshot(
        snapshot_json=snapshot,
        snapshot_hash=hash_version_snapshot(snapshot),
        totals=totals,
    )
