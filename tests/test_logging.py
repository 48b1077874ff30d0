"""
Structured logging: operation context on service logs, engine error
expansion and handler setup.
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from factor_kernel.exceptions import SettlementIncompleteError, VersionMismatchError
from factor_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from factor_modules.factor.models import OperationStatus
from factor_modules.factor.service import FactorService


class UnavailableReceivables:
    """Real ledger for lookups; every custody move fails."""

    def __init__(self, ledger):
        self._ledger = ledger

    def __getattr__(self, name):
        return getattr(self._ledger, name)

    def update_installment(self, **kwargs):
        raise RuntimeError("receivables unavailable")


def _records(captured_logs, message):
    return [r for r in captured_logs() if r["message"] == message]


# =============================================================================
# Operation context on service logs
# =============================================================================


class TestServiceLogContext:

    def test_item_added_carries_operation_context(
        self, factor_service, draft_operation, make_installment, company_id, actor_id, captured_logs,
    ):
        factor_service.add_operation_item(draft_operation.id, "discount", make_installment().id)

        (record,) = _records(captured_logs, "factor_item_added")
        assert record["company_id"] == str(company_id)
        assert record["actor_id"] == str(actor_id)
        assert record["operation_id"] == str(draft_operation.id)
        assert record["line_no"] == 1
        assert "version_id" not in record

    def test_factor_logs_have_no_operation(self, factor_service, company_id, captured_logs):
        factor_service.create_factor(name="F-Log", organization_id=uuid4())

        (record,) = _records(captured_logs, "factor_created")
        assert record["company_id"] == str(company_id)
        assert "operation_id" not in record

    def test_apply_responses_binds_version(self, sent_operation, accept_all, captured_logs):
        accept_all(sent_operation)

        for message in ("factor_apply_responses_started", "factor_apply_responses_committed"):
            (record,) = _records(captured_logs, message)
            assert record["operation_id"] == str(sent_operation.operation.id)
            assert record["version_id"] == str(sent_operation.version.id)

    def test_context_released_after_call(self, factor_service, sent_operation, accept_all):
        accept_all(sent_operation)
        factor_service.conclude_operation(sent_operation.operation.id)
        assert LogContext.get_all() == {}

    def test_settlement_failure_names_operation_and_cause(
        self, session, company_id, actor_id, deterministic_clock, receivables,
        factor, make_installment, captured_logs,
    ):
        service = FactorService(
            session, company_id=company_id, actor_id=actor_id,
            clock=deterministic_clock, receivables=UnavailableReceivables(receivables),
        )
        operation = service.create_operation(factor.id)
        service.add_operation_item(operation.id, "discount", make_installment().id)
        sent = service.send_to_factor(operation.id)
        service.apply_responses(operation.id, sent.version.id, [
            {"operation_item_id": i.id, "response_status": "accepted"}
            for i in service.get_operation_detail(operation.id).items
        ])

        with pytest.raises(SettlementIncompleteError):
            service.conclude_operation(operation.id)

        (record,) = _records(captured_logs, "factor_settlement_incomplete")
        assert record["level"] == "ERROR"
        assert record["company_id"] == str(company_id)
        assert record["operation_id"] == str(operation.id)
        assert record["step"] == "items"
        assert record["created_posting_keys"] == []
        assert record["exc_type"] == "RuntimeError"
        assert record["exc_message"] == "receivables unavailable"


# =============================================================================
# Formatter
# =============================================================================


@pytest.fixture
def json_logger():
    """A ``factor_kernel`` child logger writing to a buffer."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = get_logger("tests.formatter")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    def _last() -> dict:
        return json.loads(stream.getvalue().strip().split("\n")[-1])

    yield logger, _last
    logger.removeHandler(handler)


class TestFormatter:

    def test_context_precedes_extras(self, json_logger):
        logger, last = json_logger
        with LogContext.bind(operation_id="op-ctx"):
            logger.info("factor_send_started", extra={"operation_id": "op-extra", "item_count": 2})

        record = last()
        assert list(record)[:5] == ["ts", "level", "logger", "message", "operation_id"]
        assert record["operation_id"] == "op-ctx"
        assert record["item_count"] == 2

    def test_amounts_and_statuses(self, json_logger):
        logger, last = json_logger
        logger.info("factor_operation_sent", extra={
            "status": OperationStatus.SENT_TO_FACTOR,
            "gross_amount": Decimal("1000.50"),
        })

        record = last()
        assert record["status"] == "sent_to_factor"
        assert record["gross_amount"] == "1000.50"

    def test_retryable_settlement_error_expanded(self, json_logger):
        logger, last = json_logger
        try:
            raise SettlementIncompleteError("op-1", "costs", "payables unavailable")
        except SettlementIncompleteError:
            logger.error("factor_conclude_failed", exc_info=True)

        record = last()
        assert record["exc_code"] == "SETTLEMENT_INCOMPLETE"
        assert record["exc_retryable"] is True
        assert record["exc_operation_id"] == "op-1"
        assert record["exc_step"] == "costs"
        assert "traceback" in record

    def test_version_mismatch_not_retryable(self, json_logger):
        logger, last = json_logger
        try:
            raise VersionMismatchError("op-1", "v-old", "v-new")
        except VersionMismatchError:
            logger.warning("factor_responses_rejected", exc_info=True)

        record = last()
        assert record["exc_code"] == "VERSION_MISMATCH"
        assert record["exc_retryable"] is False
        assert record["exc_submitted_version_id"] == "v-old"


# =============================================================================
# LogContext
# =============================================================================


class TestLogContext:

    def test_bind_accepts_uuids(self):
        operation_id = uuid4()
        with LogContext.bind(operation_id=operation_id, version_id=None) as ctx:
            assert ctx == {"operation_id": str(operation_id)}
        assert LogContext.get_all() == {}

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(company_id="co", operation_id="outer"):
            with LogContext.bind(operation_id="inner"):
                assert LogContext.get_all() == {"company_id": "co", "operation_id": "inner"}
            assert LogContext.get_all() == {"company_id": "co", "operation_id": "outer"}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="trace_id"):
            LogContext.bind(trace_id="t")
        with pytest.raises(TypeError):
            LogContext.set(request_id="r")

    def test_field_order(self):
        LogContext.set(**{name: name for name in reversed(CONTEXT_FIELDS)})
        assert tuple(LogContext.get_all()) == CONTEXT_FIELDS


# =============================================================================
# configure_logging
# =============================================================================


class TestConfigureLogging:

    @pytest.fixture(autouse=True)
    def _fresh(self):
        reset_logging()
        yield
        reset_logging()

    def test_idempotent(self):
        h1 = logging.StreamHandler(StringIO())
        h2 = logging.StreamHandler(StringIO())
        configure_logging(handler=h1)
        configure_logging(handler=h2)

        root = logging.getLogger("factor_kernel")
        assert h1 in root.handlers
        assert h2 not in root.handlers
        assert isinstance(h1.formatter, StructuredFormatter)

    def test_level_name_accepted(self):
        configure_logging(level="DEBUG", handler=logging.StreamHandler(StringIO()))
        assert logging.getLogger("factor_kernel").level == logging.DEBUG
        assert logging.getLogger("factor_kernel").propagate is False

    def test_get_logger_namespace(self):
        assert get_logger("modules.factor.service").name == "factor_kernel.modules.factor.service"
