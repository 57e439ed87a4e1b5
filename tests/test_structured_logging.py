"""Tests for the structured logging system (contract_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from contract_kernel.domain.contract import ContractStatus
from contract_kernel.exceptions import InvalidStateError
from contract_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_one_json_object_per_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")
        get_logger("test").info("world")

        records = _parse_all_logs(stream)
        assert [r["message"] for r in records] == ["hello", "world"]
        assert records[0]["level"] == "INFO"
        assert records[0]["logger"] == "contract_kernel.test"
        assert "ts" in records[0]

    def test_extra_fields_are_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        contract_id = uuid4()
        get_logger("test").info(
            "contract_created",
            extra={
                "contract_id": contract_id,
                "value": Decimal("12000.00"),
                "start_date": date(2024, 1, 1),
                "status": ContractStatus.DRAFT,
            },
        )

        record = _parse_all_logs(stream)[0]
        assert record["contract_id"] == str(contract_id)
        assert record["value"] == "12000.00"
        assert record["start_date"] == "2024-01-01"
        assert record["status"] == "draft"

    def test_kernel_exception_attributes(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InvalidStateError("Contract", "c-1", "draft", "suspend")
        except InvalidStateError:
            get_logger("test").exception("operation_failed")

        record = _parse_all_logs(stream)[0]
        assert record["exc_type"] == "InvalidStateError"
        assert record["exc_code"] == "INVALID_STATE"
        assert record["exc_current_status"] == "draft"
        assert "traceback" in record

    def test_level_filtering(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        get_logger("test").info("quiet")
        get_logger("test").warning("loud")
        assert [r["message"] for r in _parse_all_logs(stream)] == ["loud"]

    def test_configure_is_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        handlers = logging.getLogger("contract_kernel").handlers
        assert handlers.count(handler) == 1
        assert sum(isinstance(h.formatter, StructuredFormatter) for h in handlers) == 1


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_context_fields_appear_in_records(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        tenant_id = uuid4()
        LogContext.set(tenant_id=tenant_id, correlation_id="req-1")
        get_logger("test").info("with_context")

        record = _parse_all_logs(stream)[0]
        assert record["tenant_id"] == str(tenant_id)
        assert record["correlation_id"] == "req-1"

    def test_bind_restores_previous_values(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", workflow_id="wf-1"):
            assert LogContext.get_all() == {"actor_id": "inner", "workflow_id": "wf-1"}
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_none_values_are_ignored(self):
        LogContext.set(contract_id=None)
        assert LogContext.get_all() == {}

    def test_unknown_field_is_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(colour="red")


class TestServiceLogging:
    def test_rejected_operation_is_logged(self, captured_logs, create_contract,
                                         lifecycle_manager, tenant_id, test_actor_id):
        contract = create_contract()
        with pytest.raises(InvalidStateError):
            lifecycle_manager.suspend_contract(tenant_id, contract.id, test_actor_id, "too early")

        rejected = [r for r in captured_logs() if r["message"] == "operation_rejected"]
        assert len(rejected) == 1
        assert rejected[0]["operation"] == "suspend_contract"
        assert rejected[0]["error_code"] == "INVALID_STATE"
        assert rejected[0]["entity_id"] == str(contract.id)
